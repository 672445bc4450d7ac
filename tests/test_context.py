"""Tests for WhisperContext and shared model ownership."""

import copy
import gc

import pytest

from whisper_bind import (
    DtwCustom,
    DtwModelPreset,
    DtwPreset,
    DtwTopMost,
    GenericError,
    InitError,
    InvalidUtf8Error,
    NullPointerError,
    WhisperContext,
    WhisperContextParameters,
    _native,
)


def context_handles(fake_lib):
    return [args[0] for args in fake_lib.calls_to("whisper_free")]


class TestContextLoading:
    """Test model loading."""

    def test_load_from_file(self, fake_lib):
        """Test that the path is passed to the engine as bytes."""
        ctx = WhisperContext("models/ggml-tiny.bin")

        assert fake_lib.calls_to("whisper_init_from_file_with_params_no_state") == [
            (b"models/ggml-tiny.bin",)
        ]
        assert not ctx.closed

    def test_load_failure_raises_init_error(self, fake_lib):
        """Test that a null handle from the engine raises InitError."""
        fake_lib.fail_init = True

        with pytest.raises(InitError, match="failed to load whisper model"):
            WhisperContext("missing.bin")

    def test_path_with_null_byte(self, fake_lib):
        """Test that paths with embedded null bytes are rejected."""
        with pytest.raises(ValueError, match="must not contain null bytes"):
            WhisperContext("bad\0path.bin")
        assert not fake_lib.called("whisper_init_from_file_with_params_no_state")

    def test_load_from_buffer(self, fake_lib):
        """Test loading a model from memory."""
        ctx = WhisperContext.from_buffer(b"\x00" * 32)

        assert fake_lib.calls_to("whisper_init_from_buffer_with_params_no_state") == [(32,)]
        assert ctx.n_vocab() == fake_lib.n_vocab

    def test_empty_buffer(self, fake_lib):
        """Test that an empty buffer is rejected before calling the engine."""
        with pytest.raises(ValueError, match="buffer cannot be empty"):
            WhisperContext.from_buffer(b"")

    def test_default_params_disable_dtw(self, fake_lib):
        """Test the loading parameters sent by default."""
        WhisperContext("model.bin")

        cparams = fake_lib.last_context_params
        assert cparams.use_gpu is False
        assert cparams.dtw_token_timestamps is False
        assert cparams.dtw_aheads_preset == _native.WHISPER_AHEADS_NONE

    def test_dtw_preset(self, fake_lib):
        """Test that a DTW preset enables token timestamps."""
        params = WhisperContextParameters(dtw_mode=DtwPreset(DtwModelPreset.BASE_EN))
        WhisperContext("model.bin", params)

        cparams = fake_lib.last_context_params
        assert cparams.dtw_token_timestamps is True
        assert cparams.dtw_aheads_preset == _native.WHISPER_AHEADS_BASE_EN

    def test_dtw_top_most(self, fake_lib):
        """Test the top-most DTW mode."""
        WhisperContext("model.bin", WhisperContextParameters(dtw_mode=DtwTopMost(n_top=3)))

        cparams = fake_lib.last_context_params
        assert cparams.dtw_aheads_preset == _native.WHISPER_AHEADS_N_TOP_MOST
        assert cparams.dtw_n_top == 3

    def test_dtw_custom_heads(self, fake_lib):
        """Test that custom alignment heads are passed as an array."""
        params = WhisperContextParameters(dtw_mode=DtwCustom([(1, 0), (2, 3)]))
        ctx = WhisperContext("model.bin", params)

        cparams = fake_lib.last_context_params
        assert cparams.dtw_aheads_preset == _native.WHISPER_AHEADS_CUSTOM
        assert cparams.dtw_aheads.n_heads == 2
        assert cparams.dtw_aheads.heads[1].n_text_layer == 2
        assert cparams.dtw_aheads.heads[1].n_head == 3

    def test_invalid_gpu_device(self):
        """Test that a negative GPU device is rejected."""
        with pytest.raises(ValueError, match="gpu_device must be a non-negative integer"):
            WhisperContextParameters(gpu_device=-1)

    def test_invalid_dtw_top(self):
        """Test that n_top must be positive."""
        with pytest.raises(ValueError, match="n_top must be positive"):
            WhisperContextParameters(dtw_mode=DtwTopMost(n_top=0))


class TestSharedOwnership:
    """Test that the model is freed exactly once."""

    def test_close_frees_once(self, fake_lib):
        """Test that close() frees the model and is idempotent."""
        ctx = WhisperContext("model.bin")
        ctx.close()
        ctx.close()

        assert len(context_handles(fake_lib)) == 1
        assert ctx.closed

    def test_context_manager(self, fake_lib):
        """Test that leaving a with-block frees the model."""
        with WhisperContext("model.bin"):
            pass

        assert len(context_handles(fake_lib)) == 1

    def test_clone_shares_model(self, fake_lib):
        """Test that the model lives until every clone is closed."""
        ctx = WhisperContext("model.bin")
        clone = ctx.clone()
        copied = copy.copy(ctx)

        ctx.close()
        clone.close()
        assert context_handles(fake_lib) == []
        assert copied.n_vocab() == fake_lib.n_vocab

        copied.close()
        assert len(context_handles(fake_lib)) == 1

    def test_states_keep_model_alive(self, fake_lib):
        """Test that closing the context while a state exists defers the free."""
        ctx = WhisperContext("model.bin")
        state_a = ctx.create_state()
        state_b = ctx.create_state()

        ctx.close()
        assert context_handles(fake_lib) == []

        state_a.close()
        assert context_handles(fake_lib) == []

        state_b.close()
        assert len(context_handles(fake_lib)) == 1
        assert all(n == 1 for n in fake_lib.free_counts.values())

    def test_garbage_collection_frees_once(self, fake_lib):
        """Test that dropping every owner frees model and states once."""
        ctx = WhisperContext("model.bin")
        clone = ctx.clone()
        state = clone.create_state()

        del ctx, clone, state
        gc.collect()

        assert fake_lib.free_counts[("whisper_free", context_handles(fake_lib)[0])] == 1
        assert len(fake_lib.calls_to("whisper_free_state")) == 1
        assert fake_lib.contexts == set()
        assert fake_lib.states == set()

    def test_closed_handle_raises(self, fake_lib):
        """Test that using a closed handle raises NullPointerError."""
        ctx = WhisperContext("model.bin")
        ctx.close()

        with pytest.raises(NullPointerError):
            ctx.n_vocab()
        with pytest.raises(NullPointerError):
            ctx.create_state()

    def test_state_init_failure(self, fake_lib):
        """Test that a null state handle raises InitError and leaks no reference."""
        ctx = WhisperContext("model.bin")
        fake_lib.fail_state = True

        with pytest.raises(InitError, match="failed to create whisper state"):
            ctx.create_state()

        ctx.close()
        assert len(context_handles(fake_lib)) == 1


class TestModelAttributes:
    """Test read-only model introspection."""

    def test_dimensions(self, fake_lib):
        """Test the model dimension getters."""
        ctx = WhisperContext("model.bin")

        assert ctx.n_vocab() == 64
        assert ctx.n_text_ctx() == 448
        assert ctx.n_audio_ctx() == 1500
        assert ctx.is_multilingual() is True
        assert ctx.model_n_audio_state() == 384
        assert ctx.model_n_text_layer() == 4
        assert ctx.model_n_mels() == 80
        assert ctx.model_ftype() == 1
        assert ctx.model_type() == 1

    def test_model_type_readable(self, fake_lib):
        """Test the model type label triad."""
        ctx = WhisperContext("model.bin")

        assert ctx.model_type_readable_bytes() == b"tiny"
        assert ctx.model_type_readable_str() == "tiny"
        assert ctx.model_type_readable_str_lossy() == "tiny"

    def test_model_type_readable_null(self, fake_lib):
        """Test that a null label raises NullPointerError."""
        fake_lib.model_type_label = None
        ctx = WhisperContext("model.bin")

        with pytest.raises(NullPointerError):
            ctx.model_type_readable_str()

    def test_special_tokens(self, fake_lib):
        """Test the special token getters."""
        ctx = WhisperContext("model.bin")

        assert ctx.token_eot() == 50
        assert ctx.token_sot() == 51
        assert ctx.token_beg() == 56
        assert ctx.token_lang(2) == 59
        assert ctx.token_transcribe() == 63

    def test_timings(self, fake_lib):
        """Test that timing helpers reach the engine."""
        ctx = WhisperContext("model.bin")
        ctx.print_timings()
        ctx.reset_timings()

        assert fake_lib.called("whisper_print_timings")
        assert fake_lib.called("whisper_reset_timings")


class TestTokens:
    """Test tokenization and token text."""

    def test_tokenize(self, fake_lib):
        """Test that tokenize returns the ids written by the engine."""
        ctx = WhisperContext("model.bin")

        assert ctx.tokenize("hello big world", 8) == [5, 3, 5]

    def test_tokenize_too_many_tokens(self, fake_lib):
        """Test that exceeding max_tokens raises GenericError."""
        ctx = WhisperContext("model.bin")

        with pytest.raises(GenericError) as exc_info:
            ctx.tokenize("one two three", 2)
        assert exc_info.value.code == -3

    def test_tokenize_invalid_max_tokens(self, fake_lib):
        """Test that max_tokens must be positive."""
        ctx = WhisperContext("model.bin")

        with pytest.raises(ValueError, match="max_tokens must be positive integer"):
            ctx.tokenize("hello", 0)

    def test_token_count(self, fake_lib):
        """Test counting tokens without allocating an output buffer."""
        assert WhisperContext("model.bin").token_count("a b c d") == 4

    def test_token_text_triad(self, fake_lib):
        """Test bytes, strict and lossy text of a valid UTF-8 token."""
        ctx = WhisperContext("model.bin")

        assert ctx.token_to_bytes(12) == b" caf\xc3\xa9"
        assert ctx.token_to_str(12) == " café"
        assert ctx.token_to_str_lossy(12) == " café"

    def test_token_text_invalid_utf8(self, fake_lib):
        """Test that strict decoding fails where lossy decoding replaces."""
        ctx = WhisperContext("model.bin")

        with pytest.raises(InvalidUtf8Error) as exc_info:
            ctx.token_to_str(13)
        assert exc_info.value.valid_up_to == 0
        assert ctx.token_to_str_lossy(13) == "\ufffd\ufffd"

    def test_token_text_null(self, fake_lib):
        """Test that a null token text raises NullPointerError."""
        ctx = WhisperContext("model.bin")

        with pytest.raises(NullPointerError):
            ctx.token_to_bytes(1000)

    def test_checked_token_out_of_range(self, fake_lib):
        """Test that out-of-vocabulary ids never reach the engine."""
        ctx = WhisperContext("model.bin")

        assert ctx.token_to_str_checked(-1) is None
        assert ctx.token_to_str_checked(64) is None
        assert fake_lib.calls_to("whisper_token_to_str") == []
        assert ctx.token_to_str_checked(10) == " And"
