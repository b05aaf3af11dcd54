# red2blue/seed.py
from __future__ import annotations

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from red2blue import models

DEFAULT_TECHNIQUES = [
    {
        "name": "Box Breathing",
        "category": "breathing",
        "description": "4-4-4-4 breathing pattern to instantly calm your nervous system",
        "instructions": "Breathe in for 4 counts, hold for 4, breathe out for 4, hold for 4. Repeat 3-5 times.",
        "duration": 60,
        "difficulty": "beginner",
    },
    {
        "name": "3-2-1 Focus Reset",
        "category": "focus",
        "description": "Quick technique to regain concentration after distractions",
        "instructions": "Notice 3 things you can see, 2 things you can hear, 1 thing you can feel. Then refocus on your target.",
        "duration": 30,
        "difficulty": "beginner",
    },
    {
        "name": "Pressure Valve",
        "category": "pressure",
        "description": "Release tension and embrace the challenge in high-stakes moments",
        "instructions": "Take a deep breath, roll your shoulders, and say 'I embrace this challenge' before your shot.",
        "duration": 15,
        "difficulty": "intermediate",
    },
    {
        "name": "Performance Anchor",
        "category": "anchor",
        "description": "Create a physical trigger to access your best mental state",
        "instructions": "Choose a physical gesture (tap glove, touch ball). Practice it during good shots to create a confidence anchor.",
        "duration": None,
        "difficulty": "advanced",
    },
]

DEFAULT_SCENARIOS = [
    {
        "title": "Final Hole Lead Protection",
        "description": "You're leading by one stroke on the 18th tee. Your heart is racing and you're thinking about winning.",
        "pressure_level": "high",
        "category": "tournament",
        "red_head_triggers": ["thinking about outcome", "heart racing", "fear of losing lead"],
        "blue_head_techniques": ["box breathing", "process focus", "one shot at a time"],
    },
    {
        "title": "Recovery Shot After Mistake",
        "description": "You just hit into the water. Anger and frustration are building as you prepare for your penalty shot.",
        "pressure_level": "medium",
        "category": "recovery",
        "red_head_triggers": ["anger", "frustration", "dwelling on mistake"],
        "blue_head_techniques": ["pressure valve", "reset routine", "forward focus"],
    },
    {
        "title": "Difficult Putt to Make Cut",
        "description": "You need this 6-footer to make the tournament cut. Miss it and your weekend is over.",
        "pressure_level": "high",
        "category": "putting",
        "red_head_triggers": ["outcome pressure", "career implications", "technical overthinking"],
        "blue_head_techniques": ["3-2-1 reset", "routine trust", "performance anchor"],
    },
]

# Offered to new users as their first routine
DEFAULT_ROUTINE = {
    "name": "Red2Blue 25-Second Routine",
    "steps": [
        {"name": "Ritual Physical Action", "duration": 10, "description": "Deep breath (4 in, 6 out) + feet movement for balance"},
        {"name": "Visualize the Shot", "duration": 6, "description": "Picture trajectory, speed, spin with keyword 'Smooth'"},
        {"name": "Align and Commit", "duration": 4, "description": "Approach ball, align to target, commit fully"},
        {"name": "Practice Swing", "duration": 3, "description": "One purposeful swing with intended feel and tempo"},
        {"name": "Execute", "duration": 5, "description": "Step up, settle, execute with complete trust"},
    ],
}


def seed_catalogs(db: Session) -> None:
    """Fills empty technique/scenario catalogs. Safe to call on every startup."""
    if not db.scalar(select(func.count(models.Technique.id))):
        db.add_all(models.Technique(**t) for t in DEFAULT_TECHNIQUES)
        logger.info("seeded {} techniques", len(DEFAULT_TECHNIQUES))

    if not db.scalar(select(func.count(models.Scenario.id))):
        db.add_all(models.Scenario(**s) for s in DEFAULT_SCENARIOS)
        logger.info("seeded {} scenarios", len(DEFAULT_SCENARIOS))

    db.commit()
