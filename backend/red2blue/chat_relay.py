# red2blue/chat_relay.py
from __future__ import annotations

import asyncio
import json
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger

from red2blue import config
from red2blue.coach_client import CoachAdapter

SYSTEM_PROMPT = """You are Flo, an expert Red2Blue mental performance coach for golfers. You help golfers shift from "Red Head" (stressed, reactive) to "Blue Head" (calm, focused, present).

Core tools you teach:
- Box breathing: inhale 4, hold 4, exhale 4, hold 4, five cycles.
- 25-second pre-shot routine: physical ritual, visualize, align and commit, practice swing, execute.
- Control circles: inner (full control), middle (influence), outer (no control). Invest energy only in inner and middle.
- 3-2-1 focus reset: 3 things you see, 2 you hear, 1 you feel.
- Mental Skills X-Check: intensity, decision making, diversions, execution.

Meet the golfer where they are, give one or two immediately usable techniques, focus on process over outcome, keep a confident and encouraging tone.

Reply with a JSON object only:
{"message": str, "suggestions": [str], "redHeadIndicators": [str], "blueHeadTechniques": [str], "urgencyLevel": "low" | "medium" | "high"}"""

URGENCY_LEVELS = ("low", "medium", "high")


class ChatValidationError(ValueError):
    pass


@dataclass
class CoachingReply:
    message: str
    suggestions: List[str] = field(default_factory=list)
    red_head_indicators: List[str] = field(default_factory=list)
    blue_head_techniques: List[str] = field(default_factory=list)
    urgency_level: str = "low"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RelayResult:
    reply: Optional[CoachingReply]
    fallback: bool = False
    cancelled: bool = False


# -------------------------------------------------
# Fallbacks (timeouts, upstream errors, no API key)
# -------------------------------------------------
FALLBACK_REPLY = (
    "I'm here to help you develop your mental game using Red2Blue methodology. "
    "Our goal is shifting from Red Head (stressed, reactive) to Blue Head (calm, focused) states. "
    "The foundation is always: breathing for instant calm, routines for consistency, and focusing "
    "only on what you can control. What specific mental game challenge would you like to work on?"
)

_TOPIC_FALLBACKS = (
    (
        ("control circle",),
        CoachingReply(
            message=(
                "Control Circles help you manage your focus and energy. Inner Circle: what you fully control, "
                "like breathing, attitude and routine. Middle Circle: what you can influence, like strategy and "
                "preparation. Outer Circle: what you can't control, like weather and other players. Only invest "
                "energy in the Inner and Middle circles. When you feel stressed, ask: 'Is this in my circles?' "
                "If not, let it go and refocus."
            ),
            suggestions=[
                "Practice identifying what's in each circle before a round",
                "Use box breathing when you catch yourself worrying about Outer Circle stuff",
                "Build a pre-shot routine (Inner Circle control)",
            ],
            red_head_indicators=["worrying about uncontrollable factors"],
            blue_head_techniques=["Control circles awareness", "Focus redirection"],
            urgency_level="medium",
        ),
    ),
    (
        ("breathing", "breath"),
        CoachingReply(
            message=(
                "Box breathing is your instant reset from Red Head to Blue Head. Breathe in for 4 counts, hold "
                "for 4, breathe out for 4, hold for 4. Do at least 5 cycles. Use it before key shots, after "
                "mistakes, or whenever you feel tension building."
            ),
            suggestions=[
                "Practice 5 cycles of box breathing right now",
                "Make it part of your pre-shot routine",
                "Practice daily so it becomes automatic under pressure",
            ],
            red_head_indicators=["physical tension", "feeling rushed"],
            blue_head_techniques=["Box breathing", "Controlled breathing patterns"],
            urgency_level="low",
        ),
    ),
    (
        ("nervous", "anxiety", "pressure"),
        CoachingReply(
            message=(
                "Feeling nervous shows you care. The goal isn't to remove nerves but to channel that energy into "
                "focus. Start with box breathing to calm your system, then lean on your pre-shot routine so you "
                "have a clear process to follow. Nerves mean you're ready to perform."
            ),
            suggestions=[
                "Start with 5 cycles of box breathing",
                "Focus on your process rather than the outcome",
                "Use your 25-second pre-shot routine on every shot",
            ],
            red_head_indicators=["pre-round anxiety", "overthinking outcomes"],
            blue_head_techniques=["Box breathing", "Process focus", "Routine consistency"],
            urgency_level="medium",
        ),
    ),
    (
        ("mistake", "error", "mess up"),
        CoachingReply(
            message=(
                "How you respond to a mistake decides your next shot. Take a breath and acknowledge it without "
                "judgment. Ask 'What can I learn?' instead of 'Why did I do that?' Then run your reset routine "
                "and commit to the next target. Mantra: 'This shot, right now.'"
            ),
            suggestions=[
                "File it and move on",
                "Use box breathing after mistakes to reset",
                "Have a physical reset, like re-gripping the club",
            ],
            red_head_indicators=["dwelling on past mistakes", "negative self-talk"],
            blue_head_techniques=["Mistake recovery process", "Present moment focus"],
            urgency_level="medium",
        ),
    ),
)


def fallback_reply(text: str = "") -> CoachingReply:
    """Canned reply matched on topic keywords, or the general FALLBACK_REPLY."""
    lowered = (text or "").lower()
    for keywords, reply in _TOPIC_FALLBACKS:
        if any(k in lowered for k in keywords):
            return CoachingReply(**reply.to_dict())

    return CoachingReply(
        message=FALLBACK_REPLY,
        suggestions=[
            "Try box breathing (4-4-4-4) for immediate calm",
            "Develop a consistent pre-shot routine",
            "Use Control Circles to focus on what you can influence",
        ],
        blue_head_techniques=["Box breathing", "Process focus", "Control awareness"],
        urgency_level="low",
    )


# -------------------------------------------------
# Prompt + parsing
# -------------------------------------------------
def _str_list(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def parse_reply(raw: str) -> Optional[CoachingReply]:
    """
    Accepts the model's JSON object (optionally wrapped in prose or code fences).
    Plain text is used as the message. Empty output returns None.
    """
    raw = (raw or "").strip()
    if not raw:
        return None

    match = re.search(r"\{.*\}", raw, re.DOTALL)
    if match:
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            message = str(data.get("message") or "").strip()
            if not message:
                return None
            urgency = str(data.get("urgencyLevel") or "low").strip().lower()
            return CoachingReply(
                message=message,
                suggestions=_str_list(data.get("suggestions")),
                red_head_indicators=_str_list(data.get("redHeadIndicators")),
                blue_head_techniques=_str_list(data.get("blueHeadTechniques")),
                urgency_level=urgency if urgency in URGENCY_LEVELS else "low",
            )

    return CoachingReply(message=raw)


def build_messages(
    text: str,
    history: Optional[List[Dict[str, Any]]] = None,
    context: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, str]]:
    system = SYSTEM_PROMPT
    if context:
        system += "\n\nGolfer context: " + json.dumps(context, default=str)

    messages = [{"role": "system", "content": system}]

    turns = [
        t for t in (history or [])
        if t.get("role") in ("user", "assistant") and str(t.get("content") or "").strip()
    ]
    if config.COACH_HISTORY_TURNS:
        for t in turns[-config.COACH_HISTORY_TURNS:]:
            messages.append({"role": t["role"], "content": str(t["content"])})

    messages.append({"role": "user", "content": text})
    return messages


# -------------------------------------------------
# Relay
# -------------------------------------------------
async def relay_message(
    text: str,
    history: Optional[List[Dict[str, Any]]] = None,
    *,
    client: Optional[CoachAdapter],
    timeout: Optional[float] = None,
    cancel_event: Optional[asyncio.Event] = None,
    context: Optional[Dict[str, Any]] = None,
) -> RelayResult:
    """
    One message in, one reply out. Holds no conversation state.

    - empty text raises ChatValidationError before any network call
    - timeout / upstream error / no client -> fallback reply
    - cancel_event set while waiting -> RelayResult(reply=None, cancelled=True)

    Credits and gating are the caller's job.
    """
    text = (text or "").strip()
    if not text:
        raise ChatValidationError("Message cannot be empty")

    if client is None:
        return RelayResult(reply=fallback_reply(text), fallback=True)

    timeout = config.COACH_TIMEOUT_SECONDS if timeout is None else timeout
    messages = build_messages(text, history, context)

    call = asyncio.ensure_future(client.complete(messages))
    waiters = {call}
    cancel_wait = None
    if cancel_event is not None:
        cancel_wait = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_wait)

    try:
        done, pending = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    finally:
        leftovers = [t for t in waiters if not t.done()]
        for t in leftovers:
            t.cancel()
        if leftovers:
            await asyncio.gather(*leftovers, return_exceptions=True)

    if cancel_event is not None and cancel_event.is_set() and call not in done:
        logger.info("chat relay cancelled by caller")
        return RelayResult(reply=None, cancelled=True)

    if call not in done:
        logger.warning("chat relay timed out after {}s; using fallback", timeout)
        return RelayResult(reply=fallback_reply(text), fallback=True)

    exc = call.exception()
    if exc is not None:
        logger.warning("chat relay upstream failure ({}); using fallback", type(exc).__name__)
        return RelayResult(reply=fallback_reply(text), fallback=True)

    reply = parse_reply(call.result())
    if reply is None:
        logger.warning("chat relay got empty completion; using fallback")
        return RelayResult(reply=fallback_reply(text), fallback=True)

    return RelayResult(reply=reply)
