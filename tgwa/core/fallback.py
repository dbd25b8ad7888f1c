"""
Fallback policy applied when an outbound call fails.
Each decision kind maps to an ordered tuple of strategies; a strategy turns the
failed decision into the next one to try, or None when it has nothing to offer.
"""
from typing import Callable, Dict, Optional, Tuple, Type

from .models import EditText, RelayDecision, SendPhoto, SendText

FallbackStrategy = Callable[[RelayDecision], Optional[RelayDecision]]


def edit_as_new_message(decision: EditText) -> Optional[RelayDecision]:
    """Send the edited text as a new message rather than lose the update."""
    return SendText(decision.body)


def caption_only_text(decision: SendPhoto) -> Optional[RelayDecision]:
    """Drop the media and send the caption with a failure marker."""
    if decision.fallback_body is None:
        return None
    return SendText(decision.fallback_body)


DEFAULT_FALLBACK_POLICY: Dict[Type, Tuple[FallbackStrategy, ...]] = {
    EditText: (edit_as_new_message,),
    SendPhoto: (caption_only_text,),
    SendText: (),
}


def fallbacks_for(decision: RelayDecision,
                  policy: Optional[Dict[Type, Tuple[FallbackStrategy, ...]]] = None) -> Tuple[FallbackStrategy, ...]:
    """Strategies to try, in order, after ``decision`` failed."""
    policy = DEFAULT_FALLBACK_POLICY if policy is None else policy
    return policy.get(type(decision), ())
