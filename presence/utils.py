import itertools
import threading

_task_id_counter = itertools.count(1)
_task_id_lock = threading.Lock()


def generate_task_id() -> int:
    """Return a process-unique, monotonically increasing task id."""
    with _task_id_lock:
        return next(_task_id_counter)


def normalize_contact_uri(uri: str) -> str:
    """
    Normalize a contact URI for identity comparison.

    Surrounding whitespace is dropped and the scheme is lower-cased
    ("TEL:+15550100" and "tel:+15550100" are the same contact). Visual
    separators inside tel numbers are removed.

    Raises:
        ValueError: If the value is empty or has no scheme.
    """
    if not isinstance(uri, str):
        raise ValueError(f"Contact URI must be a string, got {type(uri).__name__}")

    value = uri.strip()
    scheme, sep, rest = value.partition(":")
    if not sep or not scheme or not rest:
        raise ValueError(f"Invalid contact URI: {uri!r}")

    scheme = scheme.lower()
    if scheme == "tel":
        rest = "".join(ch for ch in rest if ch not in " -.()")
    return f"{scheme}:{rest}"
