"""
JSON event log for trading sessions.

Writes newline-delimited JSON (JSONL), one file per profile, so sessions,
tool calls, orders and thread resets can be replayed after the fact.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class SessionEventLogger:
    """
    Structured JSONL logging of session events.

    Entries carry a ``type``, a UTC ``timestamp`` and the session id.
    """

    def __init__(self, log_path: str):
        """
        Initialize event logger.

        Args:
            log_path: Path to JSONL log file
        """
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"SessionEventLogger initialized: {self.log_path}")

    @classmethod
    def for_profile(cls, results_dir: str, profile: str) -> "SessionEventLogger":
        return cls(str(Path(results_dir) / profile / f"events-{profile}.jsonl"))

    def _write_entry(self, entry: Dict[str, Any]):
        """Write a single JSON entry to log file"""
        entry.setdefault('timestamp', datetime.now(timezone.utc).isoformat())
        try:
            with open(self.log_path, 'a', encoding='utf-8') as f:
                json.dump(entry, f, default=str)
                f.write('\n')
        except OSError as e:
            logger.error(f"Failed to write {entry.get('type')} event to {self.log_path}: {e}")

    def log_session_start(self, session_id: str, profile: str, model: str, thread_items: int):
        self._write_entry({
            'type': 'session_start',
            'session_id': session_id,
            'profile': profile,
            'model': model,
            'thread_items': thread_items,
        })

    def log_tool_call(self, session_id: str, name: str, args: Dict[str, Any], result: str):
        """
        Log one dispatched tool call.

        Args:
            session_id: Session identifier
            name: Tool name
            args: Normalized tool arguments
            result: Result string returned to the model
        """
        self._write_entry({
            'type': 'tool_call',
            'session_id': session_id,
            'name': name,
            'args': args,
            'result': result,
        })

    def log_order(
        self,
        session_id: str,
        action: str,
        ticker: str,
        shares: float,
        price: float,
        order_id: str,
        status: str,
    ):
        self._write_entry({
            'type': 'order',
            'session_id': session_id,
            'action': action,
            'ticker': ticker,
            'shares': shares,
            'price': price,
            'order_id': order_id,
            'status': status,
        })

    def log_thread_reset(self, session_id: str, reason: str, backup_path: Optional[str]):
        self._write_entry({
            'type': 'thread_reset',
            'session_id': session_id,
            'reason': reason,
            'backup_path': backup_path,
        })

    def log_session_end(
        self,
        session_id: str,
        turns: int,
        tool_calls: int,
        net_worth: Optional[float],
        cache_stats: Dict[str, Any],
    ):
        self._write_entry({
            'type': 'session_end',
            'session_id': session_id,
            'turns': turns,
            'tool_calls': tool_calls,
            'net_worth': net_worth,
            'cache_stats': cache_stats,
        })

    def log_error(self, session_id: str, error_type: str, message: str, context: Optional[Dict] = None):
        """Log a session-level error"""
        self._write_entry({
            'type': 'error',
            'session_id': session_id,
            'error_type': error_type,
            'message': message,
            'context': context or {},
        })
