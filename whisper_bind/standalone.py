"""Engine-wide functions that do not need a loaded model."""

from typing import Optional

from . import _native
from .params import _encode_c_string


def get_lang_max_id(lib=None) -> int:
    """Largest language id the engine knows about."""
    lib = lib if lib is not None else _native.get_library()
    return lib.whisper_lang_max_id()


def get_lang_id(lang: str, lib=None) -> Optional[int]:
    """Id of a language given its short code ("de") or full name ("german").

    Returns None if the engine does not know the language.
    """
    lib = lib if lib is not None else _native.get_library()
    ret = lib.whisper_lang_id(_encode_c_string(lang, "lang"))
    if ret == -1:
        return None
    return ret


def get_lang_str(lang_id: int, lib=None) -> Optional[str]:
    """Short code of a language id, e.g. 2 -> "de". None if unknown."""
    lib = lib if lib is not None else _native.get_library()
    raw = lib.whisper_lang_str(lang_id)
    return None if raw is None else raw.decode("utf-8", errors="replace")


def get_lang_str_full(lang_id: int, lib=None) -> Optional[str]:
    """Full name of a language id, e.g. 2 -> "german". None if unknown."""
    lib = lib if lib is not None else _native.get_library()
    raw = lib.whisper_lang_str_full(lang_id)
    return None if raw is None else raw.decode("utf-8", errors="replace")


def print_system_info(lib=None) -> str:
    """Describe the engine build: enabled backends and CPU features."""
    lib = lib if lib is not None else _native.get_library()
    raw = lib.whisper_print_system_info()
    return "" if raw is None else raw.decode("utf-8", errors="replace")


def get_version(lib=None) -> str:
    lib = lib if lib is not None else _native.get_library()
    raw = lib.whisper_version()
    return "" if raw is None else raw.decode("utf-8", errors="replace")
