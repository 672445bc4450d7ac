"""Shared fixtures: an in-process fake of the whisper.cpp library.

FakeWhisperLibrary exposes the same function names as the real shared
library and is installed with whisper_bind.set_library(). Handles are
plain integers, every free is counted, and whisper_full_with_state drives
the callbacks stored in the params struct the way the engine does.
"""

import ctypes
from collections import Counter
from dataclasses import dataclass, field
from itertools import count
from typing import Dict, List, Optional, Tuple

import numpy as np
import pytest

from whisper_bind import _native, set_library


@dataclass
class FakeToken:
    id: int
    text: bytes
    p: float = 0.9
    t_dtw: int = -1


@dataclass
class FakeSegment:
    t0: int
    t1: int
    text: bytes
    tokens: List[FakeToken] = field(default_factory=list)
    speaker_turn_next: bool = False
    no_speech_prob: float = 0.01


def default_segments() -> List[FakeSegment]:
    return [
        FakeSegment(
            0, 350, b" And so my fellow Americans",
            tokens=[FakeToken(10, b" And"), FakeToken(11, b" so"), FakeToken(12, b" my"),
                    FakeToken(13, b" fellow"), FakeToken(14, b" Americans")],
        ),
        FakeSegment(
            350, 1100, b" ask not what your country can do for you",
            tokens=[FakeToken(15, b" ask"), FakeToken(16, b" not")],
            speaker_turn_next=True,
        ),
    ]


LANGUAGES = [("en", "english"), ("zh", "chinese"), ("de", "german")]


class FakeWhisperLibrary:
    """Test double for libwhisper."""

    def __init__(self):
        self._ids = count(0x1000, 0x10)
        self.calls: List[Tuple[str, tuple]] = []
        self.free_counts: Counter = Counter()
        self.returns: Dict[str, int] = {}

        self.fail_init = False
        self.fail_state = False
        self.fail_vad_init = False
        self.n_vocab = 64
        self.model_type_label: Optional[bytes] = b"tiny"
        self.segments: List[FakeSegment] = default_segments()
        # n_new passed to each new-segment callback
        self.segments_per_callback = 1
        self.detected_lang = 2
        self.vocab: Dict[int, bytes] = {i: f"tok{i}".encode() for i in range(self.n_vocab)}
        self.vocab.update({10: b" And", 11: b" so", 12: b" caf\xc3\xa9", 13: b"\xff\xfe"})
        self.logits_available = True

        self.vad_detect_ok = True
        self.vad_segments: List[Tuple[float, float]] = [(29.0, 1050.0), (1200.0, 2000.0)]
        self.log_callback = None

        self.contexts = set()
        self.states = set()
        self.state_results: Dict[int, List[FakeSegment]] = {}
        self.state_n_len: Dict[int, int] = {}
        self.last_context_params = None
        self.last_full_params = None
        self.last_vad_params = None
        self.last_vad_context_params = None
        self._logits = None
        self._probs: Dict[int, ctypes.Array] = {}
        self._vad_segment_sets: Dict[int, List[Tuple[float, float]]] = {}

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, args))

    def _new_handle(self) -> int:
        return next(self._ids)

    def called(self, name: str) -> bool:
        return any(call_name == name for call_name, _ in self.calls)

    def calls_to(self, name: str) -> List[tuple]:
        return [args for call_name, args in self.calls if call_name == name]

    # --- context lifecycle ---

    def whisper_context_default_params(self):
        return _native.WhisperContextParamsStruct(
            use_gpu=True,
            flash_attn=False,
            gpu_device=0,
            dtw_token_timestamps=False,
            dtw_aheads_preset=_native.WHISPER_AHEADS_NONE,
            dtw_n_top=-1,
            dtw_mem_size=1024 * 1024 * 128,
        )

    def whisper_init_from_file_with_params_no_state(self, path, cparams):
        self._record("whisper_init_from_file_with_params_no_state", path)
        self.last_context_params = cparams
        if self.fail_init:
            return None
        handle = self._new_handle()
        self.contexts.add(handle)
        return handle

    def whisper_init_from_buffer_with_params_no_state(self, data, size, cparams):
        self._record("whisper_init_from_buffer_with_params_no_state", size)
        self.last_context_params = cparams
        if self.fail_init:
            return None
        handle = self._new_handle()
        self.contexts.add(handle)
        return handle

    def whisper_init_state(self, ctx):
        self._record("whisper_init_state", ctx)
        assert ctx in self.contexts, "state created from a freed context"
        if self.fail_state:
            return None
        handle = self._new_handle()
        self.states.add(handle)
        return handle

    def whisper_free(self, ctx):
        self._record("whisper_free", ctx)
        self.free_counts[("whisper_free", ctx)] += 1
        self.contexts.discard(ctx)

    def whisper_free_state(self, state):
        self._record("whisper_free_state", state)
        self.free_counts[("whisper_free_state", state)] += 1
        self.states.discard(state)

    # --- pipeline ---

    def whisper_pcm_to_mel_with_state(self, ctx, state, samples, n_samples, threads):
        self._record("whisper_pcm_to_mel_with_state", n_samples, threads)
        self.state_n_len[state] = n_samples // 160
        return self.returns.get("pcm_to_mel", 0)

    def whisper_set_mel_with_state(self, ctx, state, data, n_len, n_mel):
        self._record("whisper_set_mel_with_state", n_len, n_mel)
        self.state_n_len[state] = n_len
        return self.returns.get("set_mel", 0)

    def whisper_encode_with_state(self, ctx, state, offset, threads):
        self._record("whisper_encode_with_state", offset, threads)
        return self.returns.get("encode", 0)

    def whisper_decode_with_state(self, ctx, state, tokens, n_tokens, n_past, threads):
        self._record("whisper_decode_with_state", list(tokens[:n_tokens]), n_past, threads)
        return self.returns.get("decode", 0)

    def whisper_lang_auto_detect_with_state(self, ctx, state, offset_ms, threads, probs):
        self._record("whisper_lang_auto_detect_with_state", offset_ms, threads)
        if "lang_detect" in self.returns:
            return self.returns["lang_detect"]
        for i in range(len(LANGUAGES)):
            probs[i] = 0.05
        probs[self.detected_lang] = 0.9
        return self.detected_lang

    def whisper_get_logits_from_state(self, state):
        if not self.logits_available:
            return ctypes.POINTER(ctypes.c_float)()
        self._logits = (ctypes.c_float * self.n_vocab)(*[i / 10 for i in range(self.n_vocab)])
        return ctypes.cast(self._logits, ctypes.POINTER(ctypes.c_float))

    def whisper_n_len_from_state(self, state):
        return self.state_n_len.get(state, 0)

    def whisper_full_default_params(self, strategy):
        fp = _native.WhisperFullParamsStruct()
        fp.strategy = strategy
        fp.n_threads = 4
        fp.n_max_text_ctx = 16384
        fp.no_context = True
        fp.print_progress = True
        fp.print_realtime = False
        fp.print_timestamps = True
        fp.thold_pt = 0.01
        fp.thold_ptsum = 0.01
        fp.language = b"en"
        fp.suppress_blank = True
        fp.max_initial_ts = 1.0
        fp.length_penalty = -1.0
        fp.temperature_inc = 0.2
        fp.entropy_thold = 2.4
        fp.logprob_thold = -1.0
        fp.no_speech_thold = 0.6
        fp.greedy.best_of = 5
        fp.beam_search.beam_size = 5
        fp.beam_search.patience = -1.0
        fp.vad_params = self.whisper_vad_default_params()
        return fp

    def whisper_full_with_state(self, ctx, state, params, samples, n_samples):
        """Run a scripted transcription, invoking callbacks like the engine does."""
        self._record("whisper_full_with_state", n_samples)
        self.last_full_params = params
        results: List[FakeSegment] = []
        self.state_results[state] = results

        if params.abort_callback and params.abort_callback(params.abort_callback_user_data):
            return 7
        if params.encoder_begin_callback:
            if not params.encoder_begin_callback(ctx, state, params.encoder_begin_callback_user_data):
                return 7

        for progress in (0, 50):
            if params.progress_callback:
                params.progress_callback(ctx, state, progress, params.progress_callback_user_data)

        batch = self.segments_per_callback
        for start in range(0, len(self.segments), batch):
            new = self.segments[start:start + batch]
            results.extend(new)
            if params.new_segment_callback:
                params.new_segment_callback(
                    ctx, state, len(new), params.new_segment_callback_user_data
                )

        if params.progress_callback:
            params.progress_callback(ctx, state, 100, params.progress_callback_user_data)
        return self.returns.get("full", 0)

    # --- results ---

    def _segment(self, state, i) -> FakeSegment:
        return self.state_results[state][i]

    def whisper_full_n_segments_from_state(self, state):
        return len(self.state_results.get(state, []))

    def whisper_full_lang_id_from_state(self, state):
        return self.detected_lang

    def whisper_full_get_segment_t0_from_state(self, state, i):
        return self._segment(state, i).t0

    def whisper_full_get_segment_t1_from_state(self, state, i):
        return self._segment(state, i).t1

    def whisper_full_get_segment_speaker_turn_next_from_state(self, state, i):
        return self._segment(state, i).speaker_turn_next

    def whisper_full_get_segment_text_from_state(self, state, i):
        return self._segment(state, i).text

    def whisper_full_get_segment_no_speech_prob_from_state(self, state, i):
        return self._segment(state, i).no_speech_prob

    def whisper_full_n_tokens_from_state(self, state, i):
        self._record("whisper_full_n_tokens_from_state", i)
        return len(self._segment(state, i).tokens)

    def whisper_full_get_token_text_from_state(self, ctx, state, i, j):
        return self._segment(state, i).tokens[j].text

    def whisper_full_get_token_id_from_state(self, state, i, j):
        return self._segment(state, i).tokens[j].id

    def whisper_full_get_token_data_from_state(self, state, i, j):
        token = self._segment(state, i).tokens[j]
        return _native.WhisperTokenData(
            id=token.id, tid=0, p=token.p, plog=-0.1, pt=0.0, ptsum=0.0,
            t0=-1, t1=-1, t_dtw=token.t_dtw, vlen=0.0,
        )

    def whisper_full_get_token_p_from_state(self, state, i, j):
        return self._segment(state, i).tokens[j].p

    # --- model introspection ---

    def whisper_n_vocab(self, ctx):
        return self.n_vocab

    def whisper_n_text_ctx(self, ctx):
        return 448

    def whisper_n_audio_ctx(self, ctx):
        return 1500

    def whisper_is_multilingual(self, ctx):
        return 1

    def whisper_model_n_vocab(self, ctx):
        return self.n_vocab

    def whisper_model_n_audio_ctx(self, ctx):
        return 1500

    def whisper_model_n_audio_state(self, ctx):
        return 384

    def whisper_model_n_audio_head(self, ctx):
        return 6

    def whisper_model_n_audio_layer(self, ctx):
        return 4

    def whisper_model_n_text_ctx(self, ctx):
        return 448

    def whisper_model_n_text_state(self, ctx):
        return 384

    def whisper_model_n_text_head(self, ctx):
        return 6

    def whisper_model_n_text_layer(self, ctx):
        return 4

    def whisper_model_n_mels(self, ctx):
        return 80

    def whisper_model_ftype(self, ctx):
        return 1

    def whisper_model_type(self, ctx):
        return 1

    def whisper_model_type_readable(self, ctx):
        return self.model_type_label

    # --- tokens ---

    def whisper_tokenize(self, ctx, text, tokens, n_max_tokens):
        ids = [len(word) for word in text.split()]
        if len(ids) > n_max_tokens:
            return -len(ids)
        for i, token_id in enumerate(ids):
            tokens[i] = token_id
        return len(ids)

    def whisper_token_count(self, ctx, text):
        return len(text.split())

    def whisper_token_to_str(self, ctx, token):
        self._record("whisper_token_to_str", token)
        return self.vocab.get(token)

    def whisper_token_eot(self, ctx):
        return 50

    def whisper_token_sot(self, ctx):
        return 51

    def whisper_token_solm(self, ctx):
        return 52

    def whisper_token_prev(self, ctx):
        return 53

    def whisper_token_nosp(self, ctx):
        return 54

    def whisper_token_not(self, ctx):
        return 55

    def whisper_token_beg(self, ctx):
        return 56

    def whisper_token_lang(self, ctx, lang_id):
        return 57 + lang_id

    def whisper_token_translate(self, ctx):
        return 62

    def whisper_token_transcribe(self, ctx):
        return 63

    def whisper_print_timings(self, ctx):
        self._record("whisper_print_timings", ctx)

    def whisper_reset_timings(self, ctx):
        self._record("whisper_reset_timings", ctx)

    # --- standalone ---

    def whisper_lang_max_id(self):
        return len(LANGUAGES) - 1

    def whisper_lang_id(self, lang):
        for i, (code, name) in enumerate(LANGUAGES):
            if lang.decode() in (code, name):
                return i
        return -1

    def whisper_lang_str(self, lang_id):
        if 0 <= lang_id < len(LANGUAGES):
            return LANGUAGES[lang_id][0].encode()
        return None

    def whisper_lang_str_full(self, lang_id):
        if 0 <= lang_id < len(LANGUAGES):
            return LANGUAGES[lang_id][1].encode()
        return None

    def whisper_print_system_info(self):
        return b"AVX = 1 | AVX2 = 1 | FMA = 1 | NEON = 0 | "

    def whisper_version(self):
        return b"1.7.6"

    def whisper_log_set(self, callback, user_data):
        self._record("whisper_log_set")
        self.log_callback = callback

    # --- VAD ---

    def whisper_vad_default_params(self):
        return _native.WhisperVadParamsStruct(
            threshold=0.5,
            min_speech_duration_ms=250,
            min_silence_duration_ms=100,
            max_speech_duration_s=float(np.finfo(np.float32).max),
            speech_pad_ms=30,
            samples_overlap=0.1,
        )

    def whisper_vad_default_context_params(self):
        return _native.WhisperVadContextParamsStruct(n_threads=4, use_gpu=False, gpu_device=0)

    def whisper_vad_init_from_file_with_params(self, path, cparams):
        self._record("whisper_vad_init_from_file_with_params", path)
        self.last_vad_context_params = cparams
        if self.fail_vad_init:
            return None
        return self._new_handle()

    def whisper_vad_detect_speech(self, vctx, samples, n_samples):
        self._record("whisper_vad_detect_speech", n_samples)
        n_probs = n_samples // 512
        self._probs[vctx] = (ctypes.c_float * n_probs)(*[0.75] * n_probs)
        return self.vad_detect_ok

    def whisper_vad_n_probs(self, vctx):
        probs = self._probs.get(vctx)
        return 0 if probs is None else len(probs)

    def whisper_vad_probs(self, vctx):
        probs = self._probs.get(vctx)
        if probs is None:
            return ctypes.POINTER(ctypes.c_float)()
        return ctypes.cast(probs, ctypes.POINTER(ctypes.c_float))

    def _new_vad_segments(self, params):
        self.last_vad_params = params
        handle = self._new_handle()
        self._vad_segment_sets[handle] = list(self.vad_segments)
        return handle

    def whisper_vad_segments_from_probs(self, vctx, params):
        self._record("whisper_vad_segments_from_probs", vctx)
        return self._new_vad_segments(params)

    def whisper_vad_segments_from_samples(self, vctx, params, samples, n_samples):
        self._record("whisper_vad_segments_from_samples", n_samples)
        return self._new_vad_segments(params)

    def whisper_vad_segments_n_segments(self, segments):
        return len(self._vad_segment_sets[segments])

    def whisper_vad_segments_get_segment_t0(self, segments, i):
        self._record("whisper_vad_segments_get_segment_t0", i)
        return self._vad_segment_sets[segments][i][0]

    def whisper_vad_segments_get_segment_t1(self, segments, i):
        return self._vad_segment_sets[segments][i][1]

    def whisper_vad_free_segments(self, segments):
        self.free_counts[("whisper_vad_free_segments", segments)] += 1

    def whisper_vad_free(self, vctx):
        self.free_counts[("whisper_vad_free", vctx)] += 1


@pytest.fixture
def fake_lib():
    """Install a fresh fake engine for the duration of a test."""
    lib = FakeWhisperLibrary()
    previous = set_library(lib)
    yield lib
    set_library(previous)


def generate_test_audio(duration=1.0, sr=16000):
    """Generate synthetic test audio."""
    t = np.linspace(0, duration, int(sr * duration))
    audio = (
        0.5 * np.sin(2 * np.pi * 220 * t)
        + 0.3 * np.sin(2 * np.pi * 440 * t)
        + 0.2 * np.sin(2 * np.pi * 660 * t)
    )
    return audio.astype(np.float32)
