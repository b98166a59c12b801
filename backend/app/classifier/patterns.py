"""Pattern tables consumed by the classifier and the health engine.

Tables are priority ordered. Patterns are matched against lower-cased text.
"""

from __future__ import annotations

import re

from backend.app.classifier.rules import RuleTable, compile_patterns, rule
from backend.app.classifier.types import Emotion, Intent, SafetyLevel

# Safety: evaluated most-severe first; the classifier keeps the highest rank that matches.
SAFETY_RULES: RuleTable[SafetyLevel] = RuleTable(
    [
        rule(
            "weapons",
            SafetyLevel.DANGEROUS,
            r"\b(bomb|explosive|weapon|hathiyar|bandook|grenade)s?\b.{0,30}\b(make|making|build|create|banao|banana|banane|banate|tarika|kaise)",
            r"\b(make|making|build|create|banao|banana|banane)\b.{0,20}\b(bomb|explosive|weapon|hathiyar|grenade)s?\b",
        ),
        rule(
            "intrusion",
            SafetyLevel.DANGEROUS,
            r"\b(hack|exploit|crack)\w*\s+(into\s+)?(someone'?s?\s+)?(bank|account|password|system)",
        ),
        rule("explicit", SafetyLevel.DANGEROUS, r"\b(nude|porn|xxx|sex\s*video)s?\b"),
        rule("drug_trade", SafetyLevel.DANGEROUS, r"\b(drugs?|cocaine|heroin|meth)\s+(buy|sell|dealer|kharid|bech)"),
        rule("child_abuse", SafetyLevel.DANGEROUS, r"\b(child|minor|bachcha|bachche)\s+(sex|nude|porn)"),
        rule(
            "self_harm_intent",
            SafetyLevel.ESCALATE,
            r"\b(suicid\w*|kill myself|end my life|want to die|marna chahta|marna chahti|mar jana|marna hai|jeene ka mann nahi)\b",
            r"\b(self.?harm|cut myself|hurt myself|khud ko hurt)\b",
            r"\b(no reason to live|koi reason nahi|zindagi bekar)\b",
        ),
        rule(
            "medical_emergency",
            SafetyLevel.HEALTH_QUERY,
            r"\b(chest pain|seene mein dard|heart attack|stroke|can'?t breathe|saans nahi|behosh|unconscious|overdose|zeher|poison\w*|heavy bleeding|khoon beh)\b",
        ),
        rule(
            "symptoms",
            SafetyLevel.HEALTH_QUERY,
            r"\b(fever|bukhar|bukhaar|headache|sir\s*dard|pet\s*dard|stomach\s*(ache|pain)|cough|khansi|khaansi|zukam|vomit\w*|ulti|diarrh\w*|loose motion|acidity|migraine|asthma|allergy|rash|infection|injury|chot)\b",
            r"\b(diabetes|blood sugar|sugar level|blood pressure|bp|thyroid|cholesterol|cancer|pregnan\w*|periods?\s+(late|pain|miss))\b",
        ),
        rule(
            "medication",
            SafetyLevel.HEALTH_QUERY,
            r"\b(medicine|medication|dawai|dawa|tablet|goli|capsule|dose|dosage|paracetamol|ibuprofen|antibiotic|syrup|doctor|symptom|diagnos\w*|treatment|ilaaj|ilaj|remedy|remedies|nuskha|nuskhe|ayurved\w*|homeopath\w*)\b",
        ),
        rule(
            "home_remedy",
            SafetyLevel.HEALTH_QUERY,
            r"\b(haldi|turmeric|kadha|kaadha|giloy|ashwagandha|tulsi|ajwain|triphala|chyawanprash)\b",
        ),
        rule(
            "distress",
            SafetyLevel.SENSITIVE,
            r"\b(depress\w*|anxiety|anxious|panic|stressed|tension|pareshan)\b",
            r"\b(lonely|alone|akela|sad|dukhi|hopeless)\b",
            r"\b(breakup|divorce|relationship\s*problem)\b",
            r"\b(job\s*loss|fired|nikaal\s*diya|unemployed)\b",
        ),
    ]
)

GREETING_PATTERN = re.compile(
    r"^(hi|hello|hey|hii+|hlo|namaste|namaskar|kaise ho|kaisi ho|kya haal|good\s*(morning|evening|night)|bye|thanks|ok|okay|theek|shukriya)[\s?!.]*$",
    re.IGNORECASE,
)

# Priority order: greeting > emotional > task > learning > technical > creative > question.
INTENT_RULES: RuleTable[Intent] = RuleTable(
    [
        rule("greeting", Intent.GREETING, GREETING_PATTERN.pattern, predicate=lambda t: len(t.split()) <= 3),
        rule(
            "emotional",
            Intent.EMOTIONAL,
            r"\b(sad|happy|angry|frustrated|stressed|anxious|worried|scared|lonely|depressed|dukhi|pareshan|tension|gussa|dar|akela|excited|khush)\b",
        ),
        rule(
            "task",
            Intent.TASK,
            r"\b(write|create|make|build|generate|draft|compose|design|plan|list|summarize|translate|convert|calculate|likh|bana|likho|banao)\b",
        ),
        rule(
            "learning",
            Intent.LEARNING,
            r"\b(seekh|learn|sikhao|batao|explain|samjhao|kaise|how\s+to|tutorial|guide|steps|start|begin|basics|padhai|study)\b",
        ),
        rule(
            "technical",
            Intent.TECHNICAL,
            r"\b(code|programming|error|bug|api|database|server|function|variable|algorithm|debug|deploy|git|react|node|python|javascript|html|css|sql)\b",
        ),
        rule("creative", Intent.CREATIVE, r"\b(story|poem|song|creative|imagine|fiction|shayari|joke|funny|kahani|gana)\b"),
        rule("question", Intent.QUESTION, r"\?", r"^(what|why|when|where|who|how|which|kya|kyu|kab|kahan|kaun|kaise|konsa)\b"),
    ]
)

EMOTION_RULES: RuleTable[Emotion] = RuleTable(
    [
        rule(
            "positive",
            Emotion.POSITIVE,
            r"\b(happy|excited|great|awesome|thanks|amazing|love|wonderful|khush|mast|badiya|shukriya)\b",
            "[\U0001F60A\U0001F604\U0001F389\U0001F973❤\U0001F44D\U0001F64F]",
        ),
        rule(
            "negative",
            Emotion.NEGATIVE,
            r"\b(sad|angry|frustrated|stressed|worried|anxious|hate|terrible|dukhi|gussa|pareshan|tension)\b",
            "[\U0001F622\U0001F62D\U0001F621\U0001F624\U0001F630\U0001F614]",
        ),
    ]
)

COMPLEX_CONCEPTS = (
    "recursion", "closure", "async", "await", "promise", "callback",
    "inheritance", "polymorphism", "encapsulation", "abstraction",
    "algorithm", "blockchain", "machine learning", "neural network",
    "graphql", "websocket", "microservices", "docker", "kubernetes", "ci/cd", "devops",
    "philosophy", "consciousness", "quantum", "relativity",
    "samjhao", "explain", "batao detail mein", "pura batao",
)

# Topics where factual accuracy matters more than flair.
DETERMINISTIC_TOPICS = (
    "law", "legal", "tax", "gst", "income tax", "court", "constitution",
    "medical", "medicine", "disease", "symptoms", "diagnosis",
    "finance", "investment", "stock", "mutual fund",
    "government", "policy", "scheme", "yojana",
)

HINGLISH_MARKERS = frozenset(
    """
    kya kaise kaisi karo karna kar karu hai hain ho hu hoon tum aap mujhe mera meri mere tera
    ye yeh wo woh nahi nahin haan accha acha theek bas bhai yaar arre matlab wala waali batao btao
    seekh samajh bol bolo dekh sun likh padh chal maine tune usne humne piya khaya raha rahi rahe
    tha thi the ka ki ke ko se mein par bhi aur lekin kyun kyu kab kahan kaun abhi phir kuch sab
    bahut thoda zyada chahiye chahta chahti tarika banane banao karke kal aaj
    """.split()
)

DEVANAGARI = re.compile(r"[ऀ-ॿ]")

VAGUE_REFERENCE = re.compile(r"\b(something|anything|kuch bhi|wo cheez)\b", re.IGNORECASE)

SUPPORT_RESOURCES = "iCall: 9152987821 | Vandrevala: 1860-2662-345 | NIMHANS: 080-46110007"

WORD_PATTERN = re.compile(r"[\w']+", re.UNICODE)

__all__ = [
    "SAFETY_RULES",
    "INTENT_RULES",
    "EMOTION_RULES",
    "GREETING_PATTERN",
    "COMPLEX_CONCEPTS",
    "DETERMINISTIC_TOPICS",
    "HINGLISH_MARKERS",
    "DEVANAGARI",
    "VAGUE_REFERENCE",
    "SUPPORT_RESOURCES",
    "WORD_PATTERN",
    "compile_patterns",
]
