from typing import Optional

from .models import Step, VerificationSession


def infer_step(session: Optional[VerificationSession]) -> Step:
    """
    Return the workflow step a session is on.

    An explicitly stored step wins. Otherwise the latest artifact present
    decides, checking terminal artifacts before earlier ones so the result
    is always the furthest step reached.
    """
    if session is None:
        return Step.WELCOME
    if session.current_step is not None:
        return Step(session.current_step)

    if session.is_verified is True or session.verification_score is not None:
        return Step.RESULTS
    if session.selfie_pointers:
        return Step.RESULTS
    if session.document_pointer:
        return Step.SELFIE
    if session.guest_name or session.reservation_reference:
        return Step.DOCUMENT
    return Step.WELCOME
