"""Persisted learner settings with typed accessors."""
from dataclasses import dataclass

from flashdeck.db import get_connection

DEFAULTS = {
    "new_card_limit": "20",
    "due_card_limit": "50",
    "mixed_due_limit": "30",
    "mixed_new_limit": "10",
    "custom_session_cap": "50",
    "analytics_window_days": "30",
    "reveal_all_markers": "true",
    "write_retries": "3",
    "retry_initial_delay": "0.1",
}


def get_setting(db_path: str, key: str, default: str = None) -> str | None:
    conn = get_connection(db_path)
    row = conn.execute("SELECT value FROM user_settings WHERE key = ?", (key,)).fetchone()
    conn.close()
    if row:
        return row["value"]
    return default if default is not None else DEFAULTS.get(key)


def set_setting(db_path: str, key: str, value: str) -> None:
    conn = get_connection(db_path)
    conn.execute(
        "INSERT INTO user_settings (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value=?",
        (key, value, value),
    )
    conn.commit()
    conn.close()


def get_int_setting(db_path: str, key: str) -> int:
    return int(get_setting(db_path, key))


def get_float_setting(db_path: str, key: str) -> float:
    return float(get_setting(db_path, key))


def get_bool_setting(db_path: str, key: str) -> bool:
    return get_setting(db_path, key).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class StudySettings:
    """Snapshot of the settings the repository and session manager consult."""
    new_card_limit: int = 20
    due_card_limit: int = 50
    mixed_due_limit: int = 30
    mixed_new_limit: int = 10
    custom_session_cap: int = 50
    analytics_window_days: int = 30
    reveal_all_markers: bool = True
    write_retries: int = 3
    retry_initial_delay: float = 0.1


def load_settings(db_path: str) -> StudySettings:
    return StudySettings(
        new_card_limit=get_int_setting(db_path, "new_card_limit"),
        due_card_limit=get_int_setting(db_path, "due_card_limit"),
        mixed_due_limit=get_int_setting(db_path, "mixed_due_limit"),
        mixed_new_limit=get_int_setting(db_path, "mixed_new_limit"),
        custom_session_cap=get_int_setting(db_path, "custom_session_cap"),
        analytics_window_days=get_int_setting(db_path, "analytics_window_days"),
        reveal_all_markers=get_bool_setting(db_path, "reveal_all_markers"),
        write_retries=get_int_setting(db_path, "write_retries"),
        retry_initial_delay=get_float_setting(db_path, "retry_initial_delay"),
    )
