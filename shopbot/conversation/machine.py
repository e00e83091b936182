from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
from shopbot.common.exceptions import InputError
from shopbot.common.logging_setup import get_logger
from shopbot.common.validators import is_skip
from shopbot.conversation.flows import FLOWS, FieldStep, FlowSpec

logger = get_logger("shopbot.conversation")


@dataclass
class StepOutcome:
    """What one reply did to a draft.

    finished: the last step accepted its value; the caller commits the draft and clears the flow.
    error: the reply was rejected; `prompt` repeats the same step and the draft is unchanged.
    """
    draft: Any
    prompt: Optional[str] = None
    choices: Tuple[str, ...] = ()
    error: Optional[str] = None
    finished: bool = False


class StateMachine:
    """Drives any draft through its FieldStep table. Pure: no I/O, commits belong to the caller."""

    def __init__(self, flows: Optional[Dict[type, FlowSpec]] = None):
        self.flows = flows or FLOWS

    def spec(self, draft) -> FlowSpec:
        try:
            return self.flows[type(draft)]
        except KeyError:
            raise KeyError(f"no flow registered for {type(draft).__name__}")

    def start(self, draft) -> StepOutcome:
        row = self.spec(draft).first(draft)
        if row is None:
            return StepOutcome(draft, finished=True)
        draft.step = row.step
        return StepOutcome(draft, prompt=row.render_prompt(draft), choices=row.choices)

    def current(self, draft) -> FieldStep:
        return self.spec(draft).find(draft.step)

    def _parse(self, row: FieldStep, draft, text: Optional[str], photo: Optional[str]):
        if row.accepts_photo and photo:
            value = photo
        elif text is None:
            raise InputError("❌ لطفاً پاسخ را به صورت متن ارسال کنید:")
        elif row.optional and is_skip(text):
            value = None
        else:
            value = row.parse(text)

        if row.check is not None:
            row.check(draft, value)
        return value

    def feed(self, draft, text: Optional[str] = None, photo: Optional[str] = None) -> StepOutcome:
        spec = self.spec(draft)
        row = spec.find(draft.step)

        try:
            value = self._parse(row, draft, text, photo)
        except InputError as exc:
            logger.debug("conversation.step.rejected", extra={"flow": spec.name, "step": row.step.value})
            return StepOutcome(draft, prompt=exc.message, choices=row.choices, error=exc.message)

        setattr(draft, row.attr, value)

        nxt = spec.after(row.step, draft)
        if nxt is None:
            logger.debug("conversation.flow.completed", extra={"flow": spec.name})
            return StepOutcome(draft, finished=True)

        draft.step = nxt.step
        return StepOutcome(draft, prompt=nxt.render_prompt(draft), choices=nxt.choices)
