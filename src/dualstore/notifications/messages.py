"""Localized reminder texts."""

from __future__ import annotations

from datetime import date

SUPPORTED_LANGUAGES = ("nl", "en", "fr")
DEFAULT_LANGUAGE = "nl"


def language_for(language_code: str | None) -> str:
    """Pick a supported language from a code such as ``en-GB``."""
    if not language_code:
        return DEFAULT_LANGUAGE
    prefix = language_code.strip().lower()[:2]
    return prefix if prefix in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE


def session_text(language: str, reminder_date: date) -> tuple[str, str]:
    day = reminder_date.isoformat()
    if language == "en":
        return "Time for your activity", f"Your mental fitness activity for {day} is ready."
    if language == "fr":
        return (
            "Votre activite vous attend",
            f"Votre activite de forme mentale du {day} est prete.",
        )
    return "Tijd voor je activiteit", f"Je mentale fitness activiteit voor {day} staat klaar."


def daily_summary_text(language: str, count: int) -> tuple[str, str]:
    single = count == 1
    if language == "en":
        noun = "activity" if single else "activities"
        return "Daily activity reminder", f"You have {count} scheduled {noun} today."
    if language == "fr":
        suffix = "" if single else "s"
        return (
            "Rappel quotidien",
            f"Vous avez {count} activite{suffix} prevue{suffix} aujourd'hui.",
        )
    noun = "activiteit" if single else "activiteiten"
    return "Dagelijkse herinnering", f"Je hebt vandaag {count} geplande {noun}."


def personal_goal_text(language: str, goal_name: str) -> tuple[str, str]:
    if language == "en":
        return "Personal goal reminder", f"Today is a planned day for: {goal_name}"
    if language == "fr":
        return "Rappel objectif personnel", f"Aujourd'hui est un jour prevu pour : {goal_name}"
    return "Herinnering persoonlijk doel", f"Vandaag is een geplande dag voor: {goal_name}"
