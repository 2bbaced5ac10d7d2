"""
Thread Store: per-profile persistence of the bounded conversation thread.

File layout: <results_dir>/<profile>/thread-<profile>.json (UTF-8 JSON array).

A thread that violates a structural invariant on load is copied aside to
``<file>.<reason>-<epoch_ms>`` and replaced by an empty thread.
"""

import json
import logging
import shutil
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from autotrade_llm.errors import ThreadCorruptionError

logger = logging.getLogger(__name__)

ThreadItem = Dict[str, Any]
Thread = List[ThreadItem]

FUNCTION_CALL = "function_call"
FUNCTION_RESULT_TYPES = ("function_call_output", "function_call_result")
REASONING = "reasoning"
CALL_ID_PREFIX = "fc_"
REASONING_ID_PREFIX = "rs_"


def call_id_of(item: ThreadItem) -> Optional[str]:
    return item.get("call_id") or item.get("callId")


def is_function_call(item: ThreadItem) -> bool:
    return item.get("type") == FUNCTION_CALL


def is_function_result(item: ThreadItem) -> bool:
    return item.get("type") in FUNCTION_RESULT_TYPES


def required_reasoning_id(item: ThreadItem) -> Optional[str]:
    """Reasoning item id a function call depends on, if its provider mandates one"""
    item_id = item.get("id")
    if isinstance(item_id, str) and item_id.startswith(CALL_ID_PREFIX):
        return REASONING_ID_PREFIX + item_id[len(CALL_ID_PREFIX):]
    return None


def validate_thread(thread: Thread, hard_ceiling: int = 50) -> None:
    """
    Check the structural invariants of a thread.

    Raises:
        ThreadCorruptionError: reason "oversized" when over the ceiling,
            "corrupted" for orphan results, unanswered calls or calls
            missing reasoning
    """
    if len(thread) > hard_ceiling:
        raise ThreadCorruptionError(
            f"Thread has {len(thread)} items (ceiling {hard_ceiling})",
            reason="oversized",
        )

    call_ids: Set[str] = set()
    result_ids: Set[str] = set()
    reasoning_ids: Set[str] = set()
    for item in thread:
        if not isinstance(item, dict):
            raise ThreadCorruptionError(f"Thread item is not an object: {item!r}")
        if is_function_call(item) and call_id_of(item):
            call_ids.add(call_id_of(item))
        elif is_function_result(item) and call_id_of(item):
            result_ids.add(call_id_of(item))
        elif item.get("type") == REASONING and item.get("id"):
            reasoning_ids.add(item["id"])

    for item in thread:
        if is_function_result(item) and call_id_of(item) not in call_ids:
            raise ThreadCorruptionError(
                f"Function result {call_id_of(item)} has no matching function call"
            )
        if is_function_call(item) and call_id_of(item) not in result_ids:
            raise ThreadCorruptionError(
                f"Function call {call_id_of(item)} has no matching function result"
            )
        if is_function_call(item):
            reasoning_id = required_reasoning_id(item)
            if reasoning_id and reasoning_id not in reasoning_ids:
                raise ThreadCorruptionError(
                    f"Function call {item.get('id')} is missing reasoning item {reasoning_id}"
                )


def trim_thread(thread: Thread, max_items: int) -> Thread:
    """
    Keep the most recent ``max_items`` items.

    Calls whose reasoning item fell outside the window, results whose call
    fell outside it, and calls left without a result are dropped as well so
    the saved thread loads clean.
    """
    window = list(thread[-max_items:])

    reasoning_ids = {i.get("id") for i in window if i.get("type") == REASONING}
    window = [
        i for i in window
        if not (is_function_call(i) and required_reasoning_id(i) not in (None, *reasoning_ids))
    ]

    call_ids = {call_id_of(i) for i in window if is_function_call(i)}
    window = [i for i in window if not (is_function_result(i) and call_id_of(i) not in call_ids)]

    result_ids = {call_id_of(i) for i in window if is_function_result(i)}
    return [i for i in window if not (is_function_call(i) and call_id_of(i) not in result_ids)]


class ThreadStore:
    """Load, save and quarantine per-profile conversation threads"""

    def __init__(self, results_dir: str = "results", max_items: int = 40, hard_ceiling: int = 50):
        """
        Args:
            results_dir: Root directory holding one sub-directory per profile
            max_items: Items kept on save
            hard_ceiling: Item count above which a loaded thread is discarded
        """
        self.results_dir = Path(results_dir)
        self.max_items = max_items
        self.hard_ceiling = hard_ceiling

    def path_for(self, profile: str) -> Path:
        return self.results_dir / profile / f"thread-{profile}.json"

    def load(self, profile: str) -> Thread:
        """
        Load a profile's thread.

        Returns:
            The stored thread, or [] when missing, unreadable or corrupted
        """
        path = self.path_for(profile)
        if not path.exists():
            logger.info(f"No thread file for profile '{profile}', starting fresh")
            return []

        try:
            with open(path, 'r', encoding='utf-8') as f:
                thread = json.load(f)
            if not isinstance(thread, list):
                raise ThreadCorruptionError(f"Thread file holds {type(thread).__name__}, expected list")
            validate_thread(thread, self.hard_ceiling)
        except ThreadCorruptionError as e:
            logger.warning(f"Thread for profile '{profile}' rejected ({e.reason}): {e}")
            self.quarantine(profile, e.reason)
            return []
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read thread for profile '{profile}': {e}")
            self.quarantine(profile, "corrupted")
            return []

        logger.info(f"Loaded thread for profile '{profile}' with {len(thread)} items")
        return thread

    def save(self, profile: str, thread: Thread) -> Thread:
        """
        Persist the most recent ``max_items`` items.

        Returns:
            The thread as written
        """
        trimmed = trim_thread(thread, self.max_items)
        path = self.path_for(profile)
        path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = path.with_name(path.name + ".tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(trimmed, f, indent=2, ensure_ascii=False)
        tmp_path.replace(path)

        logger.info(
            f"Saved thread for profile '{profile}': {len(trimmed)} items "
            f"(trimmed from {len(thread)})"
        )
        return trimmed

    def quarantine(self, profile: str, reason: str) -> Optional[Path]:
        """
        Copy the thread file aside and clear it.

        Returns:
            Path of the backup copy, or None if there was no file
        """
        path = self.path_for(profile)
        if not path.exists():
            return None

        backup = path.with_name(f"{path.name}.{reason}-{int(time.time() * 1000)}")
        shutil.copy2(path, backup)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump([], f)
        logger.warning(f"Quarantined thread for profile '{profile}' to {backup}")
        return backup
