"""
Guest Identity Verification

This package contains the verification pipeline for guest onboarding sessions:
- Session lifecycle and step inference
- Multi-guest quorum tracking
- Document ingestion with background field extraction and MRZ parsing
- Face liveness / match scoring and the verification decision
"""

__version__ = "1.0.0"
