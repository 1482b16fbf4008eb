"""
The signup interview script.

`STEPS` is the fixed, ordered list of steps the orchestrator walks through.
Spoken texts (prompts, greeting, welcome, acknowledgement remarks) live here so
the orchestrator only deals with step indices and locales.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import random
from typing import Callable, Optional, Sequence

from src.signup.language import Locale, LocalizedText


class StepId(str, Enum):
    GREETING = "greeting"
    NAME = "name"
    USERNAME = "username"
    EMAIL = "email"
    PASSWORD = "password"
    CONFIRM_PASSWORD = "confirm_password"
    DOB = "dob"
    COUNTRY = "country"
    CITY = "city"
    TERMS = "terms"
    CREATING = "creating"
    WELCOME = "welcome"


@dataclass(frozen=True)
class StepDefinition:
    id: StepId
    required: bool
    voice: bool
    prompt: LocalizedText

    @property
    def is_silent(self) -> bool:
        """True for steps that never speak a prompt (greeting, creating, welcome)."""
        return not self.prompt


_NO_PROMPT = LocalizedText("", "")

STEPS: tuple[StepDefinition, ...] = (
    StepDefinition(StepId.GREETING, required=True, voice=False, prompt=_NO_PROMPT),
    StepDefinition(
        StepId.NAME, required=True, voice=True,
        prompt=LocalizedText("What's your name?", "ما اسمك؟"),
    ),
    StepDefinition(
        StepId.USERNAME, required=True, voice=True,
        prompt=LocalizedText("Choose a username.", "اختر اسم مستخدم."),
    ),
    StepDefinition(
        StepId.EMAIL, required=True, voice=True,
        prompt=LocalizedText("What's your email address?", "ما بريدك الإلكتروني؟"),
    ),
    StepDefinition(
        StepId.PASSWORD, required=True, voice=False,
        prompt=LocalizedText("For privacy, please type your password.", "للخصوصية، اكتب كلمة المرور."),
    ),
    StepDefinition(
        StepId.CONFIRM_PASSWORD, required=True, voice=False,
        prompt=LocalizedText("Please confirm your password.", "أكد كلمة المرور."),
    ),
    StepDefinition(
        StepId.DOB, required=False, voice=True,
        prompt=LocalizedText("When were you born? You can skip this.", "متى ولدت؟ يمكنك تخطي هذا."),
    ),
    StepDefinition(
        StepId.COUNTRY, required=False, voice=True,
        prompt=LocalizedText(
            "Which country are you from? You can skip this.", "من أي بلد أنت؟ يمكنك تخطي هذا."
        ),
    ),
    StepDefinition(
        StepId.CITY, required=False, voice=True,
        prompt=LocalizedText("Which city? You can skip this.", "أي مدينة؟ يمكنك تخطي هذا."),
    ),
    StepDefinition(
        StepId.TERMS, required=True, voice=False,
        prompt=LocalizedText(
            "Please agree to our Privacy Policy and Terms of Service.",
            "يرجى الموافقة على سياسة الخصوصية وشروط الخدمة.",
        ),
    ),
    StepDefinition(StepId.CREATING, required=True, voice=False, prompt=_NO_PROMPT),
    StepDefinition(StepId.WELCOME, required=True, voice=False, prompt=_NO_PROMPT),
)

_INDEX_BY_ID = {step.id: idx for idx, step in enumerate(STEPS)}

# Steps the user actually answers; used for "step N of M" progress.
ANSWERABLE_STEP_COUNT = sum(1 for step in STEPS if not step.is_silent)


def step_index(step_id: StepId | str) -> int:
    return _INDEX_BY_ID[StepId(step_id)]


GREETING_TEXT = LocalizedText(
    "Hi there! I'm {agent_name}. Let's set up your account together. I'll ask you a few questions.",
    "مرحبًا! أنا {agent_name}. دعنا ننشئ حسابك معًا. سأسألك بعض الأسئلة.",
)

WELCOME_TEXT = LocalizedText(
    "Welcome to {agent_name}! You have free access for 24 hours. Don't forget to subscribe. "
    "Check your email to confirm your account.",
    "مرحبًا بك في {agent_name}! لديك وصول مجاني لمدة 24 ساعة. لا تنسَ الاشتراك. "
    "تحقق من بريدك الإلكتروني لتأكيد حسابك.",
)

CREATING_TEXT = LocalizedText("Creating your account...", "جارٍ إنشاء حسابك...")

# Persona pushed once when the session opens. Every later instruction is either
# a verbatim utterance or the lock.
BASE_INSTRUCTIONS = LocalizedText(
    "You are {agent_name}, a voice that reads scripted lines during account signup. "
    "Only ever speak when instructed, and then say exactly the requested text. "
    "Never answer the user on your own and never ask follow-up questions.",
    "أنت {agent_name}، صوت يقرأ جملًا محددة أثناء إنشاء الحساب. "
    "لا تتحدث إلا عندما يُطلب منك، وعندها قل النص المطلوب بالضبط. "
    "لا ترد على المستخدم من تلقاء نفسك ولا تسأل أسئلة متابعة.",
)

VERBATIM_INSTRUCTION = LocalizedText(
    'Say EXACTLY this and nothing else: "{text}"',
    'قل بالضبط هذا ولا شيء آخر: "{text}"',
)

LOCK_INSTRUCTION = LocalizedText(
    "Do not respond. Stay silent until you are explicitly told what to say.",
    "لا ترد. ابقَ صامتًا حتى يُطلب منك بالتحديد ما تقوله.",
)


def _remarks(*pairs: tuple[str, str]) -> tuple[LocalizedText, ...]:
    return tuple(LocalizedText(en, ar) for en, ar in pairs)


ACKNOWLEDGEMENTS: dict[StepId, tuple[LocalizedText, ...]] = {
    StepId.NAME: _remarks(
        ("Nice to meet you!", "تشرفنا!"),
        ("Lovely name!", "اسم جميل!"),
        ("Great to meet you!", "سعيد بلقائك!"),
    ),
    StepId.USERNAME: _remarks(
        ("Good choice!", "اختيار جيد!"),
        ("That works!", "ممتاز!"),
        ("Nice username!", "اسم مستخدم رائع!"),
    ),
    StepId.EMAIL: _remarks(
        ("Got it, thanks!", "تمام، شكرًا!"),
        ("Perfect!", "ممتاز!"),
        ("Thanks, noted!", "شكرًا، تم التسجيل!"),
    ),
    StepId.DOB: _remarks(
        ("Thanks!", "شكرًا!"),
        ("Noted!", "تم!"),
    ),
    StepId.COUNTRY: _remarks(
        ("Great place!", "مكان رائع!"),
        ("Thanks!", "شكرًا!"),
    ),
    StepId.CITY: _remarks(
        ("Lovely!", "جميل!"),
        ("Thanks!", "شكرًا!"),
    ),
}

Chooser = Callable[[Sequence[str]], str]


def acknowledgements_for(step_id: StepId | str, locale: Locale) -> tuple[str, ...]:
    remarks = ACKNOWLEDGEMENTS.get(StepId(step_id), ())
    return tuple(remark.get(locale) for remark in remarks)


def pick_acknowledgement(
    step_id: StepId | str,
    locale: Locale,
    choose: Chooser = random.choice,
) -> Optional[str]:
    """
    Pick an acknowledgement remark for a confirmed step.

    None for steps without remarks (password family, terms and the silent steps).
    """
    options = acknowledgements_for(step_id, locale)
    if not options:
        return None
    return choose(options)
