import logging
from itertools import combinations
from typing import List, Optional
from mbc.domain.errors import PlanError, PlanErrorKind
from mbc.domain.models import (
    MediaStreamProfile, ReconciliationPlan, ReconciliationStrategy,
    InputReconciliation, MismatchReason, STRUCTURAL_MISMATCHES, TrimWindow
)
from mbc.pipeline.codecs import compatible, is_h264

FPS_TOLERANCE = 0.01

def _video_codecs_differ(a: str, b: str) -> bool:
    # H.264 aliases still need repackaging into one bitstream format
    if is_h264(a) and is_h264(b):
        return a.lower() != b.lower()
    return not compatible(a, b)

def compare_profiles(reference: MediaStreamProfile, other: MediaStreamProfile) -> List[MismatchReason]:
    """Lists every property of `other` that does not match `reference`."""
    reasons = []
    if _video_codecs_differ(other.video_codec, reference.video_codec):
        reasons.append(MismatchReason.CODEC)
    if reference.has_audio and other.has_audio and not compatible(other.audio_codec, reference.audio_codec):
        reasons.append(MismatchReason.AUDIO_CODEC)
    if abs(round(other.fps, 2) - round(reference.fps, 2)) > FPS_TOLERANCE:
        reasons.append(MismatchReason.FRAME_RATE)
    if other.resolution != reference.resolution:
        reasons.append(MismatchReason.RESOLUTION)
    if other.pix_fmt != reference.pix_fmt:
        reasons.append(MismatchReason.PIXEL_FORMAT)
    if reference.audio_sample_rate and other.audio_sample_rate and other.audio_sample_rate != reference.audio_sample_rate:
        reasons.append(MismatchReason.AUDIO_SAMPLE_RATE)
    if reference.audio_channels and other.audio_channels and other.audio_channels != reference.audio_channels:
        reasons.append(MismatchReason.AUDIO_CHANNELS)
    return reasons

class ReconciliationPlanner:
    """Decides how heterogeneous inputs are brought to one format before composing."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def plan(
        self,
        profiles: List[MediaStreamProfile],
        reference: Optional[MediaStreamProfile] = None
    ) -> ReconciliationPlan:
        if not profiles:
            raise ValueError("Cannot plan reconciliation without inputs")
        if reference is None:
            reference = profiles[0]

        others = [p for p in profiles if p is not reference]
        inputs = [InputReconciliation(profile=p, reasons=compare_profiles(reference, p)) for p in others]
        all_h264 = all(is_h264(p.video_codec) for p in [reference] + others)
        any_mismatch = any(item.mismatched for item in inputs)

        if not any_mismatch:
            # Inputs can agree with the reference yet disagree among themselves,
            # e.g. a silent reference next to clips with different audio codecs.
            if len(others) > 1 and not all_h264 and any(
                compare_profiles(a, b) for a, b in combinations(others, 2)
            ):
                self.logger.info("PLAN: inputs disagree with each other, forcing full re-encode")
                return ReconciliationPlan(
                    reference=reference,
                    inputs=inputs,
                    strategy=ReconciliationStrategy.FULL_REENCODE,
                    forced=True
                )
            self.logger.info("PLAN: all inputs match the reference, no preprocessing")
            return ReconciliationPlan(reference=reference, inputs=inputs, strategy=ReconciliationStrategy.NONE)

        structural = any(
            STRUCTURAL_MISMATCHES.intersection(item.reasons) for item in inputs if item.mismatched
        )
        if all_h264 and not structural:
            strategy = ReconciliationStrategy.FAST_REPACKAGE
        else:
            strategy = ReconciliationStrategy.FULL_REENCODE

        for item in inputs:
            if item.mismatched:
                reasons = ", ".join(r.value for r in item.reasons)
                self.logger.info(f"PLAN: {item.profile.name} differs from {reference.name}: {reasons}")
        self.logger.info(f"PLAN: strategy={strategy.value}")
        return ReconciliationPlan(reference=reference, inputs=inputs, strategy=strategy)

    def plan_trim(self, duration: float, intro_trim: float = 0.0, outro_trim: float = 0.0) -> TrimWindow:
        """Window of the main clip left after cutting its head and tail."""
        remaining = duration - intro_trim - outro_trim
        if remaining <= 0:
            raise PlanError(
                PlanErrorKind.INVALID_TRIM,
                f"Trim of {intro_trim}s + {outro_trim}s leaves nothing of a {duration:.2f}s clip"
            )
        return TrimWindow(start=intro_trim, duration=remaining)
