"""
Tests for workflow step inference.
"""
import itertools

import pytest

from verification.models import Step, VerificationSession
from verification.steps import infer_step


def legacy_session(**fields):
    """Session record written before current_step was stored"""
    return VerificationSession(token="t", current_step=None, **fields)


class TestInferStep:
    def test_missing_session_is_welcome(self):
        assert infer_step(None) == Step.WELCOME

    def test_explicit_step_wins(self):
        session = legacy_session(document_pointer="s3://b/k")
        session.current_step = Step.DOCUMENT
        assert infer_step(session) == Step.DOCUMENT

    def test_verified_flag_means_results(self):
        assert infer_step(legacy_session(is_verified=True)) == Step.RESULTS

    def test_score_means_results(self):
        assert infer_step(legacy_session(verification_score=0.2, is_verified=False)) == Step.RESULTS

    def test_selfie_means_results(self):
        assert infer_step(legacy_session(selfie_pointers=["s3://b/s"], document_pointer="s3://b/d")) == Step.RESULTS

    def test_document_means_selfie(self):
        assert infer_step(legacy_session(document_pointer="s3://b/d", guest_name="Anna")) == Step.SELFIE

    def test_guest_info_means_document(self):
        assert infer_step(legacy_session(reservation_reference="RES1")) == Step.DOCUMENT

    def test_empty_session_is_welcome(self):
        assert infer_step(legacy_session()) == Step.WELCOME

    @pytest.mark.parametrize("document,selfie,verified,explicit",
                             list(itertools.product([False, True], repeat=4)))
    def test_total_and_idempotent(self, document, selfie, verified, explicit):
        """Every artifact combination maps to exactly one step, the same each time."""
        session = legacy_session(
            document_pointer="s3://b/d" if document else None,
            selfie_pointers=["s3://b/s"] if selfie else [],
            is_verified=True if verified else None,
        )
        if explicit:
            session.current_step = Step.SELFIE
        step = infer_step(session)
        assert step in set(Step)
        assert infer_step(session) == step
        if explicit:
            assert step == Step.SELFIE
        elif selfie or verified:
            assert step == Step.RESULTS
        elif document:
            assert step == Step.SELFIE
        else:
            assert step == Step.WELCOME
