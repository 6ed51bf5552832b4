"""Risk assessment and care plan transforms applied to processed recordings.

Both transforms are synchronous and deterministic. ``analyze_report`` turns
the external processor's report into a risk classification with
recommendations; ``generate_care_plan`` turns that classification into a
care plan.
"""

from __future__ import annotations

import re
from typing import Any, Mapping, Optional

from .errors import AnalysisError, PlanGenerationError
from .persistence.models import SubjectRef

RISK_LEVELS = ("High", "Medium", "Low")

DEFAULT_DOMINANT_FREQUENCY = 10.0
DEFAULT_ASYMMETRY_INDEX = 0.15

_LEADING_NUMBER = re.compile(r"^\s*([-+]?\d+(?:\.\d+)?)")


def parse_measurement(name: str, value: Any, default: float) -> float:
    """Read a numeric finding such as ``"10.2 Hz"`` or ``0.15``."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise AnalysisError(f"Finding {name} is not numeric: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = _LEADING_NUMBER.match(value)
        if match:
            return float(match.group(1))
    raise AnalysisError(f"Finding {name} is not numeric: {value!r}")


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def detect_abnormalities(frequency: float, asymmetry: float) -> list[str]:
    abnormalities = []
    if frequency < 8:
        abnormalities.append("Slow alpha variant")
    if asymmetry > 0.3:
        abnormalities.append("Significant hemispheric asymmetry")
    return abnormalities


def analyze_brain_waves(findings: Mapping[str, Any]) -> dict[str, Any]:
    frequency = parse_measurement(
        "dominantFrequency", findings.get("dominantFrequency"), DEFAULT_DOMINANT_FREQUENCY
    )
    if frequency <= 0:
        raise AnalysisError(f"Dominant frequency must be positive, got {frequency}")
    asymmetry = parse_measurement(
        "asymmetryIndex", findings.get("asymmetryIndex"), DEFAULT_ASYMMETRY_INDEX
    )
    return {
        "alpha": {
            "frequency": frequency,
            "power": round(_clamp((frequency - 7) / 5, 0.3, 0.9), 3),
            "symmetry": "Normal" if asymmetry < 0.2 else "Asymmetric",
            "reactivity": findings.get("alphaBlockingResponse") or "Normal",
        },
        "beta": {"ratio": round(15 / frequency, 2)},
        "theta": {"power": round(_clamp((10 - frequency) / 8, 0.1, 0.4), 3)},
        "connectivity": {"left_right": round(1 - asymmetry, 3)},
        "abnormalities": detect_abnormalities(frequency, asymmetry),
    }


def categorize_risk(score: int) -> str:
    if score >= 7:
        return "High"
    if score >= 4:
        return "Medium"
    return "Low"


def assess_risk(brain_waves: Mapping[str, Any], subject: SubjectRef) -> dict[str, Any]:
    score = 0
    factors: list[str] = []

    if subject.age is not None and subject.age > 65:
        score += 2
        factors.append("Advanced age")
    if brain_waves["alpha"]["frequency"] < 8.5:
        score += 3
        factors.append("Slow alpha frequency")
    if brain_waves["alpha"]["symmetry"] == "Asymmetric":
        score += 2
        factors.append("Hemispheric asymmetry")
    abnormalities = brain_waves["abnormalities"]
    score += len(abnormalities)
    factors.extend(abnormalities)

    return {
        "total_score": score,
        "risk_level": categorize_risk(score),
        "risk_factors": factors,
        "follow_up_required": score > 3,
        "urgency": "High" if score > 6 else "Medium" if score > 3 else "Low",
    }


def build_recommendations(risk_level: str) -> list[dict[str, Any]]:
    recommendations = []
    if risk_level == "High":
        recommendations.append(
            {
                "type": "urgent",
                "title": "Immediate Medical Attention",
                "description": "Schedule appointment with neurologist within 2 weeks",
                "priority": 1,
            }
        )
    if risk_level in ("High", "Medium"):
        recommendations.append(
            {
                "type": "clinical",
                "title": "Follow-up qEEG",
                "description": "Repeat qEEG assessment in 3-6 months to monitor changes",
                "priority": 2,
            }
        )
    recommendations.append(
        {
            "type": "lifestyle",
            "title": "Cognitive Enhancement",
            "description": "Engage in regular mental exercises and learning activities",
            "priority": 3,
        }
    )
    recommendations.append(
        {
            "type": "monitoring",
            "title": "Sleep Quality",
            "description": "Maintain consistent sleep schedule and address any sleep disorders",
            "priority": 4,
        }
    )
    return sorted(recommendations, key=lambda r: r["priority"])


def _summary(brain_waves: Mapping[str, Any], risk: Mapping[str, Any]) -> str:
    alpha = brain_waves["alpha"]["frequency"]
    limits = "within normal" if alpha >= 9 else "below normal"
    follow_up = (
        "Follow-up assessment is recommended."
        if risk["follow_up_required"]
        else "Routine monitoring is sufficient."
    )
    return (
        f"This recording shows {risk['risk_level'].lower()} risk patterns. "
        f"Alpha frequency of {alpha:g} Hz is {limits} limits. {follow_up}"
    )


def analyze_report(report: Any, subject: SubjectRef) -> dict[str, Any]:
    """Classify risk from a processed recording report.

    Raises:
        AnalysisError: If ``report`` is not a mapping with a ``findings``
            mapping, or a finding cannot be read as a number.
    """
    if not isinstance(report, Mapping):
        raise AnalysisError(f"Expected a report mapping, got {type(report).__name__}")
    findings = report.get("findings")
    if not isinstance(findings, Mapping):
        raise AnalysisError("Report has no findings section")

    brain_waves = analyze_brain_waves(findings)
    risk = assess_risk(brain_waves, subject)
    return {
        "brain_waves": brain_waves,
        "risk_assessment": risk,
        "recommendations": build_recommendations(risk["risk_level"]),
        "summary": _summary(brain_waves, risk),
    }


_BASE_GOALS = [
    "Optimize brain function and cognitive performance",
    "Monitor neurological health indicators",
    "Prevent cognitive decline where applicable",
]

_INTERVENTIONS = {
    "High": [
        "Immediate neurological consultation",
        "Comprehensive neuropsychological testing",
        "Consider pharmacological intervention",
    ],
    "Medium": [
        "Cognitive training exercises",
        "Neurofeedback therapy consideration",
        "Regular medical check-ups",
    ],
    "Low": [
        "Preventive cognitive exercises",
        "Lifestyle optimization",
        "Annual health screenings",
    ],
}

_MONITORING_FREQUENCY = {
    "High": "Every 3 months",
    "Medium": "Every 4 months",
    "Low": "Every 6 months",
}


def generate_care_plan(
    analysis: Any, subject: Optional[SubjectRef] = None
) -> dict[str, Any]:
    """Build a care plan from an analysis payload.

    Raises:
        PlanGenerationError: If the payload carries no recognised risk level.
    """
    if not isinstance(analysis, Mapping):
        raise PlanGenerationError("Analysis payload is not a mapping")
    risk = analysis.get("risk_assessment")
    level = risk.get("risk_level") if isinstance(risk, Mapping) else None
    if level not in RISK_LEVELS:
        raise PlanGenerationError(f"Unknown risk level: {level!r}")

    alerts = ["Urgent follow-up required"] if level == "High" else []
    return {
        "patient_id": subject.patient_id if subject else None,
        "risk_level": level,
        "goals": list(_BASE_GOALS),
        "interventions": list(_INTERVENTIONS[level]),
        "monitoring": {
            "frequency": _MONITORING_FREQUENCY[level],
            "parameters": ["qEEG follow-up", "Cognitive assessment", "Symptom monitoring"],
            "alerts": alerts,
        },
        "lifestyle": {
            "exercise": "Regular aerobic exercise 30min, 5x/week",
            "sleep": "7-9 hours quality sleep nightly",
            "nutrition": "Mediterranean diet rich in omega-3 fatty acids",
            "stress": "Stress management techniques and mindfulness",
        },
    }
