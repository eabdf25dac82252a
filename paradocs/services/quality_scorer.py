"""
quality_scorer.py — Ten-dimension quality score for a single report.

Works on anything that can be expressed as a ScoringInput: rows already in
the `reports` collection (see from_report) and scraped reports that have
not been ingested yet. The result is advisory; nothing persists it.

SCORING
───────
Each dimension adds up signal contributions (flags worth fixed points,
keyword / regex hits worth fractions of a point), is capped to [0, 10] and
multiplied by a fixed weight:

    evidence_strength        1.2     source_reliability       1.1
    witness_credibility      1.0     corroboration_potential  0.8
    description_detail       1.1     narrative_coherence      1.0
    location_specificity     1.1     content_originality      0.8
    temporal_precision       0.9     data_completeness        0.8

    total = round(Σ weighted / (Σ weights × 10) × 100)

Grade bands: A ≥ 90, B ≥ 75, C ≥ 60, D ≥ 40, else F.
Recommended status: approved ≥ 75, pending_review ≥ 40, else rejected.

The function is pure: same input, same QualityReport.
"""

from __future__ import annotations

import math
import re

from paradocs.models.quality import DimensionScore, QualityDimensions, QualityReport
from paradocs.models.report import Report, ScoringInput

SCORER_VERSION = "2.0.0"

WEIGHTS: dict[str, float] = {
    "evidence_strength": 1.2,
    "witness_credibility": 1.0,
    "description_detail": 1.1,
    "location_specificity": 1.1,
    "temporal_precision": 0.9,
    "source_reliability": 1.1,
    "corroboration_potential": 0.8,
    "narrative_coherence": 1.0,
    "content_originality": 0.8,
    "data_completeness": 0.8,
}

_GRADE_BANDS = [
    (90, "A"),
    (75, "B"),
    (60, "C"),
    (40, "D"),
]

# (base score, tier label)
SOURCE_TIERS: dict[str, tuple[float, str]] = {
    "bfro":               (8.0, "established org"),
    "nuforc":             (7.5, "established database"),
    "mufon":              (8.0, "established org"),
    "nderf":              (7.0, "research database"),
    "iands":              (7.0, "research org"),
    "wikipedia":          (6.0, "curated secondary"),
    "historical_archive": (7.0, "historical"),
    "user":               (5.0, "user submitted"),
    "reddit":             (4.0, "social media"),
    "ghostsofamerica":    (4.5, "community site"),
    "shadowlands":        (4.0, "community site"),
}
_UNKNOWN_SOURCE = (3.0, "unknown")


def _round1(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def _dimension(name: str, score: float, factors: list[str], fallback: str) -> DimensionScore:
    score = max(0.0, min(score, 10.0))
    weight = WEIGHTS[name]
    return DimensionScore(
        score=score,
        weight=weight,
        weighted=_round1(score * weight),
        explanation="; ".join(factors) if factors else fallback,
    )


def _count_matches(patterns: list[re.Pattern], text: str) -> int:
    return sum(1 for p in patterns if p.search(text))


# ── 1. Evidence strength ──────────────────────────────────────────────────────

_EVIDENCE_TERMS = [
    "photograph", "photo", "video", "recording", "footage",
    "physical evidence", "trace", "imprint", "mark", "burn",
    "sample", "radiation", "electromagnetic", "radar",
    "police report", "military", "faa", "official",
]


def _evidence_strength(inp: ScoringInput) -> DimensionScore:
    score = 0.0
    factors: list[str] = []

    if inp.has_physical_evidence:
        score += 3
        factors.append("physical evidence claimed")
    if inp.has_photo_video:
        score += 2.5
        factors.append("photo/video evidence")
    if inp.has_official_report:
        score += 2
        factors.append("official report filed")
    if inp.evidence_summary and len(inp.evidence_summary) > 20:
        score += 1.5
        factors.append("evidence summary provided")

    desc = inp.description.lower()
    mentions = sum(1 for t in _EVIDENCE_TERMS if t in desc)
    score += min(mentions * 0.5, 1)

    return _dimension("evidence_strength", score, factors, "no evidence indicators")


# ── 2. Witness credibility ────────────────────────────────────────────────────

_RELATION_RE = re.compile(
    r"\b(my (wife|husband|partner|friend|brother|sister|mother|father|son|daughter|neighbor|colleague))\b",
    re.I,
)
_SELF_ID_RE = re.compile(r"\b(my name is|i am [a-z]|identified|contact me)\b", re.I)
_CREDIBLE_TERMS = [
    "pilot", "officer", "police", "military", "scientist", "professor",
    "doctor", "engineer", "astronomer", "meteorologist", "ranger",
    "firefighter", "security", "air traffic",
]


def _witness_credibility(inp: ScoringInput) -> DimensionScore:
    score = 2.0   # someone reported something
    factors: list[str] = []
    desc = inp.description.lower()

    witnesses = inp.witness_count or 1
    if witnesses >= 5:
        score += 3
        factors.append(f"{witnesses} witnesses")
    elif witnesses >= 3:
        score += 2.5
        factors.append(f"{witnesses} witnesses")
    elif witnesses >= 2:
        score += 1.5
        factors.append("multiple witnesses")

    if _RELATION_RE.search(desc):
        score += 1
        factors.append("named relation as witness")

    credible = [t for t in _CREDIBLE_TERMS if t in desc]
    if credible:
        score += 2
        factors.append(f"credible witness background: {credible[0]}")

    if _SELF_ID_RE.search(inp.description):
        score += 1
        factors.append("witness self-identified")

    return _dimension("witness_credibility", score, factors, "single anonymous witness")


# ── 3. Description detail ─────────────────────────────────────────────────────

_SENSORY_RES = [
    re.compile(r"\b(saw|seen|looked|appeared|visible|bright|dark|glowing|shining|luminous|colou?r|red|green|blue|white|orange)\b", re.I),
    re.compile(r"\b(heard|sound|noise|silent|loud|humming|buzzing|roaring|whisper|screech|bang|crack)\b", re.I),
    re.compile(r"\b(felt|feeling|sensation|cold|hot|warm|tingling|pressure|vibrat|electric|numb)\b", re.I),
    re.compile(r"\b(smell|odor|stench|sulfur|ozone|burning|metallic)\b", re.I),
]
_MEASURE_RES = [
    re.compile(r"\b\d+\s*(foot|feet|ft|inch|meter|metre|yard|mile|km)\b", re.I),
    re.compile(r"\b(size of|as big as|as large as|about \d+)\b", re.I),
    re.compile(r"\b(altitude|elevation|height|diameter|wingspan)\b", re.I),
    re.compile(r"\b(speed|mph|kph|knots|mach)\b", re.I),
]
_BEHAVIOR_RES = [
    re.compile(r"\b(moved|hovered|flew|descended|ascended|zigzag|darted|glided|vanished|disappeared|materialized)\b", re.I),
    re.compile(r"\b(approached|retreated|circled|followed|chased|fled|ran|walked|crawled)\b", re.I),
]


def _description_detail(inp: ScoringInput) -> DimensionScore:
    score = 0.0
    factors: list[str] = []
    desc = inp.description
    words = len(desc.split())

    if words >= 500:
        score += 3
        factors.append(f"{words} words (detailed)")
    elif words >= 200:
        score += 2
        factors.append(f"{words} words (moderate)")
    elif words >= 100:
        score += 1
        factors.append(f"{words} words (brief)")
    else:
        factors.append(f"{words} words (thin)")

    sensory = _count_matches(_SENSORY_RES, desc)
    score += min(sensory * 0.5, 2)
    if sensory:
        factors.append(f"{sensory} sensory types")

    measures = _count_matches(_MEASURE_RES, desc)
    score += min(measures, 2)
    if measures:
        factors.append("physical measurements")

    behaviors = _count_matches(_BEHAVIOR_RES, desc)
    score += min(behaviors * 0.75, 1.5)
    if behaviors:
        factors.append("behavioral details")

    if inp.summary and 50 < len(inp.summary) < 500:
        score += 0.5

    return _dimension("description_detail", score, factors, "minimal detail")


# ── 4. Location specificity ───────────────────────────────────────────────────

_LOCATION_RES = [
    re.compile(r"\b(highway|route|interstate|road|street|avenue|boulevard|lane|drive)\s*(#?\d+|[A-Z])", re.I),
    re.compile(r"\b(mile marker|exit|junction|intersection)\b", re.I),
    re.compile(r"\b\d+\s*(north|south|east|west)\s+of\b", re.I),
    re.compile(r"\b(near|outside|just past|approaching)\s+[A-Z][a-z]+"),
]


def _location_specificity(inp: ScoringInput) -> DimensionScore:
    score = 0.0
    factors: list[str] = []

    # (0, 0) is the null-island placeholder some sources emit
    if inp.latitude is not None and inp.longitude is not None and inp.latitude != 0 and inp.longitude != 0:
        score += 3
        factors.append("GPS coordinates")
    if inp.country:
        score += 1
        factors.append(f"country: {inp.country}")
    if inp.state_province:
        score += 1.5
        factors.append("state/province")
    if inp.city:
        score += 1.5
        factors.append("city specified")
    if inp.location_name and len(inp.location_name) > 3:
        score += 1
        factors.append("named location")

    markers = _count_matches(_LOCATION_RES, inp.description)
    score += min(markers, 2)
    if markers:
        factors.append("descriptive location markers")

    return _dimension("location_specificity", score, factors, "no location data")


# ── 5. Temporal precision ─────────────────────────────────────────────────────

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_CLOCK_TIME_RE = re.compile(r"\b\d{1,2}:\d{2}\s*(am|pm|a\.m\.|p\.m\.)?\b", re.I)
_TIME_OF_DAY_RE = re.compile(r"\b(morning|afternoon|evening|night|midnight|dawn|dusk|noon|sunrise|sunset)\b")
_DURATION_RE = re.compile(r"\b(lasted|for about|approximately|roughly)\s+\d+\s*(second|minute|hour|day)", re.I)
_SEQUENCE_WORDS = [
    "then", "after that", "next", "finally", "moments later",
    "shortly after", "before", "afterwards",
]


def _temporal_precision(inp: ScoringInput) -> DimensionScore:
    score = 0.0
    factors: list[str] = []
    desc = inp.description.lower()

    if inp.event_date:
        if _ISO_DATE_RE.match(inp.event_date):
            score += 3
            factors.append("specific date")
        else:
            score += 1.5
            factors.append("approximate date")
    if inp.event_time:
        score += 2
        factors.append("specific time")

    if _CLOCK_TIME_RE.search(desc):
        score += 1.5
        factors.append("time mentioned in text")
    elif _TIME_OF_DAY_RE.search(desc):
        score += 0.75
        factors.append("time of day referenced")

    if _DURATION_RE.search(desc) or inp.metadata.get("event_duration_minutes"):
        score += 1.5
        factors.append("duration specified")

    sequence = sum(1 for w in _SEQUENCE_WORDS if w in desc)
    if sequence >= 3:
        score += 2
        factors.append("detailed temporal sequence")
    elif sequence >= 1:
        score += 1
        factors.append("basic temporal sequence")

    return _dimension("temporal_precision", score, factors, "no temporal data")


# ── 6. Source reliability ─────────────────────────────────────────────────────

def _source_reliability(inp: ScoringInput) -> DimensionScore:
    source = inp.source_type or "unknown"
    base, tier = SOURCE_TIERS.get(source, _UNKNOWN_SOURCE)
    score = base
    factors = [f"{tier} ({source})"]
    meta = inp.metadata

    if source == "bfro":
        bfro_class = meta.get("bfro_class") or meta.get("bfroClass")
        if bfro_class == "Class A":
            score += 2
            factors.append("Class A sighting")
        elif bfro_class == "Class B":
            score += 1
            factors.append("Class B sighting")

    if source == "reddit":
        upvotes = meta.get("score")
        if isinstance(upvotes, (int, float)):
            if upvotes > 200:
                score += 2
                factors.append(f"high engagement ({upvotes} upvotes)")
            elif upvotes > 50:
                score += 1
                factors.append("moderate engagement")

    if meta.get("source_url"):
        score += 0.5
        factors.append("source URL available")

    return _dimension("source_reliability", score, factors, tier)


# ── 7. Corroboration potential ────────────────────────────────────────────────

_OTHER_WITNESS_RE = re.compile(
    r"\b(other (people|witnesses|reports|sightings)|news|newspaper|reported by|also saw|others have seen)\b",
    re.I,
)
_EXTERNAL_DATA_RE = re.compile(
    r"\b(weather report|flight radar|satellite|seismic|police blotter|news article|local paper)\b",
    re.I,
)
_SENSE_RES = [
    re.compile(r"\b(saw|visible|light|glow)", re.I),
    re.compile(r"\b(heard|sound|noise)", re.I),
    re.compile(r"\b(felt|sensation|temperature)", re.I),
    re.compile(r"\b(smell|odor)", re.I),
]


def _corroboration_potential(inp: ScoringInput) -> DimensionScore:
    score = 0.0
    factors: list[str] = []
    desc = inp.description.lower()

    if inp.event_date and (inp.latitude is not None or inp.location_name):
        score += 3
        factors.append("date+location for cross-reference")
    if _OTHER_WITNESS_RE.search(desc):
        score += 2
        factors.append("references other witnesses/reports")
    if _EXTERNAL_DATA_RE.search(desc):
        score += 2
        factors.append("references verifiable external data")
    if len(inp.tags) >= 2:
        score += 1
        factors.append(f"{len(inp.tags)} tags")
    if inp.city and inp.state_province:
        score += 1
        factors.append("city+state searchable")
    if _count_matches(_SENSE_RES, desc) >= 3:
        score += 1
        factors.append("multi-sensory account")

    return _dimension("corroboration_potential", score, factors, "limited corroboration potential")


# ── 8. Narrative coherence ────────────────────────────────────────────────────

_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
_FIRST_PERSON_RE = re.compile(r"\bI\b")
_THIRD_PERSON_RE = re.compile(r"\b(he|she|they|it)\b", re.I)
_FLOW_WORDS = [
    "then", "after", "before", "when", "while", "suddenly", "next",
    "finally", "at first", "eventually", "later", "meanwhile",
]


def _narrative_coherence(inp: ScoringInput) -> DimensionScore:
    score = 0.0
    factors: list[str] = []
    desc = inp.description

    sentences = [s for s in _SENTENCE_SPLIT_RE.split(desc) if len(s.strip()) > 10]
    n_sentences = len(sentences)

    if n_sentences >= 5:
        score += 2
        factors.append(f"{n_sentences} sentences")
    elif n_sentences >= 3:
        score += 1
        factors.append(f"{n_sentences} sentences (short)")

    if sentences:
        avg_words = sum(len(s.split()) for s in sentences) / n_sentences
        if 10 <= avg_words <= 25:
            score += 2
            factors.append("good sentence length")
        elif 6 <= avg_words <= 35:
            score += 1
            factors.append("acceptable sentence length")
        else:
            factors.append(f"irregular sentence length (avg {round(avg_words)} words)")

    paragraphs = [p for p in re.split(r"\n\n+", desc) if len(p.strip()) > 30]
    if len(paragraphs) >= 3:
        score += 1.5
        factors.append("well-structured paragraphs")
    elif len(paragraphs) >= 2:
        score += 0.75

    first_person = len(_FIRST_PERSON_RE.findall(desc))
    third_person = len(_THIRD_PERSON_RE.findall(desc))
    if first_person > 5 and first_person > third_person * 2:
        score += 1.5
        factors.append("consistent first-person voice")
    elif first_person > 0:
        score += 0.5

    lowered = desc.lower()
    flow = sum(1 for w in _FLOW_WORDS if w in lowered)
    if flow >= 4:
        score += 2
        factors.append("strong narrative flow")
    elif flow >= 2:
        score += 1
        factors.append("basic narrative flow")

    # Penalties for ranting
    caps_ratio = sum(1 for ch in desc if "A" <= ch <= "Z") / max(len(desc), 1)
    if caps_ratio > 0.4:
        score -= 2
        factors.append("excessive caps (penalty)")
    if desc.count("!") / max(n_sentences, 1) > 2:
        score -= 1
        factors.append("excessive exclamation (penalty)")

    return _dimension("narrative_coherence", score, factors, "minimal narrative")


# ── 9. Content originality ────────────────────────────────────────────────────

_TEMPLATE_RES = [
    re.compile(r"\b(lorem ipsum|test report|sample data|example report)\b", re.I),
    re.compile(r"\b(copy and paste|copypasta|repost|x-post)\b", re.I),
    re.compile(r"\b(this is a test|testing 123|ignore this)\b", re.I),
]
_PROPER_NAME_RE = re.compile(r"\b[A-Z][a-z]+\s+[A-Z][a-z]+\b")
_SPECIFIC_NUMBER_RE = re.compile(r"\b\d{3,}\b")
_UNIQUE_DETAIL_RE = re.compile(r"\b(license plate|model|make|serial|badge)\b", re.I)
_EMOTION_RES = [
    re.compile(r"\b(terrified|scared|frightened|shaking|couldn't sleep|nightmare|haunted me|still think about)\b", re.I),
    re.compile(r"\b(amazed|awestruck|speechless|couldn't believe|changed my life|never forget)\b", re.I),
    re.compile(r"\b(confused|puzzled|baffled|no explanation|makes no sense|rational person)\b", re.I),
]


def _content_originality(inp: ScoringInput) -> DimensionScore:
    score = 5.0   # neutral: there is no corpus to check for plagiarism against
    factors: list[str] = []
    desc = inp.description

    if any(p.search(desc) for p in _TEMPLATE_RES):
        score -= 3
        factors.append("template/boilerplate detected")

    if _PROPER_NAME_RE.search(desc):
        score += 1
        factors.append("specific names")
    if _SPECIFIC_NUMBER_RE.search(desc):
        score += 0.5
        factors.append("specific numbers")
    if _UNIQUE_DETAIL_RE.search(desc):
        score += 1
        factors.append("unique identifying details")

    emotions = _count_matches(_EMOTION_RES, desc)
    if emotions >= 2:
        score += 2
        factors.append("authentic emotional response")
    elif emotions == 1:
        score += 1
        factors.append("emotional marker")

    # Second half mostly repeating the first half's vocabulary
    words = desc.lower().split()
    if len(words) > 50:
        half = len(words) // 2
        first_half = set(words[:half])
        second_half = words[half:]
        overlap = sum(1 for w in second_half if w in first_half) / len(second_half)
        if overlap > 0.8:
            score -= 2
            factors.append("repetitive content detected")

    return _dimension("content_originality", score, factors, "neutral originality")


# ── 10. Data completeness ─────────────────────────────────────────────────────

def _data_completeness(inp: ScoringInput) -> DimensionScore:
    fields: list[tuple[bool, float]] = [
        (bool(inp.title), 1),
        (len(inp.description) > 50, 1),
        (bool(inp.summary) and len(inp.summary) > 10, 0.5),
        (bool(inp.category), 0.5),
        (bool(inp.location_name), 1),
        (bool(inp.country), 0.5),
        (bool(inp.state_province), 0.75),
        (bool(inp.city), 0.75),
        (inp.latitude is not None and inp.longitude is not None, 1),
        (bool(inp.event_date), 1),
        (bool(inp.source_type), 0.5),
        (len(inp.tags) > 0, 0.5),
        (bool(inp.witness_count) and inp.witness_count > 0, 0.5),
        (bool(inp.credibility), 0.5),
    ]
    total_weight = sum(w for _, w in fields)
    filled_weight = sum(w for present, w in fields if present)
    filled = sum(1 for present, _ in fields if present)

    score = _round1(filled_weight / total_weight * 10)
    return _dimension(
        "data_completeness", score, [f"{filled}/{len(fields)} fields populated"], ""
    )


# ── Public API ────────────────────────────────────────────────────────────────

def grade_for(total: int) -> str:
    for threshold, grade in _GRADE_BANDS:
        if total >= threshold:
            return grade
    return "F"


def recommended_status_for(total: int) -> str:
    if total >= 75:
        return "approved"
    if total >= 40:
        return "pending_review"
    return "rejected"


def score_report(inp: ScoringInput) -> QualityReport:
    """Score a report on all ten dimensions and derive grade + recommendation."""
    dimensions = QualityDimensions(
        evidence_strength=_evidence_strength(inp),
        witness_credibility=_witness_credibility(inp),
        description_detail=_description_detail(inp),
        location_specificity=_location_specificity(inp),
        temporal_precision=_temporal_precision(inp),
        source_reliability=_source_reliability(inp),
        corroboration_potential=_corroboration_potential(inp),
        narrative_coherence=_narrative_coherence(inp),
        content_originality=_content_originality(inp),
        data_completeness=_data_completeness(inp),
    )
    scores = [getattr(dimensions, name) for name in WEIGHTS]
    total_weights = sum(d.weight for d in scores)
    total_weighted = sum(d.weighted for d in scores)

    total = int(math.floor(total_weighted / (total_weights * 10) * 100 + 0.5))
    total = max(0, min(total, 100))

    return QualityReport(
        total_score=total,
        grade=grade_for(total),
        recommended_status=recommended_status_for(total),
        dimensions=dimensions,
        version=SCORER_VERSION,
    )


def quick_score(inp: ScoringInput) -> int:
    """Just the 0–100 total, for batch callers that don't need the breakdown."""
    return score_report(inp).total_score


def from_report(report: Report) -> ScoringInput:
    """Build a ScoringInput from a stored report."""
    return ScoringInput(
        title=report.title,
        description=report.description,
        summary=report.summary,
        category=report.category,
        location_name=report.location_name,
        country=report.country,
        state_province=report.state_province,
        city=report.city,
        latitude=report.latitude,
        longitude=report.longitude,
        event_date=report.event_date.date().isoformat() if report.event_date else None,
        event_time=report.event_time,
        witness_count=report.witness_count,
        has_physical_evidence=report.has_physical_evidence,
        has_photo_video=report.has_photo_video,
        has_official_report=report.has_official_report,
        evidence_summary=report.evidence_summary,
        source_type=report.source_type,
        credibility=report.credibility,
        tags=report.tags,
        metadata=report.metadata,
    )
