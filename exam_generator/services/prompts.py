"""Prompt texts for the model and the canned answers used in test mode."""

import json
from typing import Optional

from exam_generator.models.exam import ExamRequestParams

SYSTEM_PROMPT = """Du bist ein professioneller Lehrer an einem Gymnasium in Bayern.
Du erstellst Prüfungen streng nach Lehrplan. Verwende ausschließlich Standarddeutsch (Hochdeutsch).
DEINE AUFGABE: Erstelle eine Prüfung basierend auf den Bildern im folgenden JSON-Format.
KRITISCHE REGELN:
1. NIEMALS Math-Mode ($...$) für normalen Text verwenden.
2. Lückentexte IMMER als normalen Text mit Platzhalter _____ (5 Unterstriche).
3. Unteraufgaben (a, b, c) MÜSSEN im "subtasks"-Array landen.
4. Jede Aufgabe MUSS eine "loesung" enthalten.
5. Der "titel" darf NUR das Thema enthalten.
JSON-SCHEMA: { "titel": "Thema (Kurz)", "hilfsmittel": "Hilfsmittel", "aufgaben": [ { "anweisung": "Frage", "inhalt": "Text", "loesung": "Lsg", "subtasks": [ { "inhalt": "a)", "loesung": "b)" } ], "punkte": 10 } ] }
"""

ANALYZE_PROMPT = (
    "Analysiere die Bilder eines Hefteintrags. Bestimme Fach, Jahrgangsstufe und Thema. "
    'Antworte nur mit JSON: { "fach": "...", "klasse": "...", "thema": "..." }'
)

# Keyword (lower case, substring of the subject) -> curriculum hint.
CURRICULUM_CONTEXT: dict[str, str] = {
    "mathe": "LehrplanPLUS Gymnasium Bayern, Mathematik: Aufgaben mit Rechenweg, "
             "Ergebnisse exakt oder sinnvoll gerundet angeben.",
    "deutsch": "LehrplanPLUS Gymnasium Bayern, Deutsch: Textverständnis, Grammatik "
               "und Rechtschreibung gemäß amtlicher Regelung.",
    "englisch": "LehrplanPLUS Gymnasium Bayern, Englisch: Aufgabenstellungen auf Englisch, "
                "Wortschatz und Grammatik der Jahrgangsstufe.",
    "latein": "LehrplanPLUS Gymnasium Bayern, Latein: Übersetzung, Formenlehre und "
              "Satzanalyse im Umfang der Lektion.",
    "physik": "LehrplanPLUS Gymnasium Bayern, Physik: Größen mit Einheiten, "
              "Formel umstellen vor dem Einsetzen.",
    "chemie": "LehrplanPLUS Gymnasium Bayern, Chemie: Reaktionsgleichungen als Text, "
              "Fachbegriffe präzise verwenden.",
    "bio": "LehrplanPLUS Gymnasium Bayern, Biologie: Fachbegriffe, Struktur-Funktions-"
           "Zusammenhänge und Beschreibungen von Abbildungen.",
    "geschichte": "LehrplanPLUS Gymnasium Bayern, Geschichte: Daten, Quellenarbeit und "
                  "Begründungen in ganzen Sätzen.",
    "geo": "LehrplanPLUS Gymnasium Bayern, Geographie: Raumbezug, Fachbegriffe und "
           "Erklärungen von Zusammenhängen.",
}


def curriculum_context(subject: str) -> Optional[str]:
    """Pick a curriculum hint by simple keyword match on the subject name."""
    key = (subject or "").strip().lower()
    if not key:
        return None
    for keyword, context in CURRICULUM_CONTEXT.items():
        if keyword in key:
            return context
    return None


def build_exam_prompt(params: ExamRequestParams) -> str:
    """System prompt plus the context of one request."""
    policy = params.exam_kind.policy
    lines = [
        SYSTEM_PROMPT,
        f"Kontext: Fach {params.subject}, Klasse {params.display_grade}, "
        f"Thema {params.topic or 'laut Hefteintrag'}.",
        f"Prüfungsart: {policy.label}, Bearbeitungszeit {policy.duration_label}, "
        f"{policy.min_tasks} bis {policy.max_tasks} Aufgaben.",
    ]
    context = curriculum_context(params.subject)
    if context:
        lines.append(f"Lehrplan: {context}")
    return "\n".join(lines)


def canned_exam_response(params: ExamRequestParams) -> str:
    """Raw text standing in for the model answer in test mode."""
    return json.dumps({
        "titel": params.topic or "Test Thema",
        "hilfsmittel": "Keine",
        "aufgaben": [
            {
                "anweisung": "Berechne.",
                "inhalt": "",
                "loesung": "",
                "subtasks": [
                    {"inhalt": "2+2", "loesung": "4"},
                    {"inhalt": "4+4", "loesung": "8"},
                ],
                "punkte": 4,
            }
        ],
    }, ensure_ascii=False)


def canned_analysis_response() -> str:
    return json.dumps({"fach": "Mathe", "klasse": "10", "thema": "Test"})
