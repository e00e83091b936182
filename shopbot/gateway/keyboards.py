from typing import Any, Dict, List, Sequence


def button(text: str, callback_data: str) -> Dict[str, str]:
    return {"text": text, "callback_data": callback_data}


def inline_keyboard(rows: Sequence[Sequence[Dict[str, str]]]) -> Dict[str, Any]:
    """Grid of buttons whose payloads come back as callback queries."""
    return {"inline_keyboard": [list(r) for r in rows if r]}


def reply_keyboard(rows: Sequence[Sequence[str]], resize: bool = True, one_time: bool = False) -> Dict[str, Any]:
    """Plain-text buttons; a press re-enters as an ordinary text message."""
    return {
        "keyboard": [[{"text": label} for label in r] for r in rows],
        "resize_keyboard": resize,
        "one_time_keyboard": one_time,
    }


def remove_keyboard() -> Dict[str, Any]:
    return {"remove_keyboard": True}


def labels(keyboard: Dict[str, Any]) -> List[str]:
    """Flatten every visible label in a keyboard; handy for menus and tests."""
    rows = keyboard.get("inline_keyboard") or keyboard.get("keyboard") or []
    return [b["text"] for r in rows for b in r]
