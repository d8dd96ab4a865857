from dataclasses import dataclass, field
from typing import Dict

ENGLISH = "en"
SWAHILI = "sw"
DEFAULT_LANGUAGE = ENGLISH
RESPONSE_LANGUAGES = {ENGLISH: "English", SWAHILI: "Kiswahili"}

BEAUTY_PROMPT = """
You are a professional beauty and style consultant AI. You provide expert advice on:
- Skincare routines and product recommendations
- Makeup techniques and color matching
- Fashion styling and outfit coordination
- Hair care and styling tips
- Beauty trends and seasonal looks
- Personal style development

Respond in a friendly, encouraging tone with practical, actionable advice. Always consider different skin types, budgets, and personal preferences.
"""

BEAUTY_PROMPT_SW = """
Wewe ni AI wa kitaalamu wa urembo na mitindo. Unatoa ushauri wa kitaalamu kuhusu:
- Mipango ya utunzaji wa ngozi na mapendekezo ya bidhaa
- Mbinu za urembo wa uso na kuoanisha rangi
- Uratibu wa mitindo na mavazi
- Vidokezo vya utunzaji na mitindo ya nywele
- Mitindo ya urembo na mandhari ya msimu
- Ukuzaji wa mtindo wa kibinafsi

Jibu kwa sauti ya kirafiki na ya kutia moyo na ushauri wa vitendo. Zingatia aina tofauti za ngozi, bajeti, na mapendeleo ya kibinafsi.
"""

WRITING_PROMPT = """
You are an expert writing assistant AI. You help with:
- Creative writing and storytelling
- Academic and professional writing
- Grammar, style, and clarity improvements
- Content structure and organization
- Editing and proofreading
- Writing techniques and best practices

Provide clear, constructive feedback and suggestions. Help users improve their writing skills while maintaining their unique voice.
"""

WRITING_PROMPT_SW = """
Wewe ni AI msaidizi wa kitaalamu wa kuandika. Unasaidia na:
- Uandishi wa ubunifu na kusimulisha hadithi
- Uandishi wa kitaaluma na wa kitaalamu
- Marekebisho ya sarufi, mtindo, na uwazi
- Muundo wa maudhui na mpangilio
- Uhariri na ukaguzi
- Mbinu za uandishi na mazoea bora

Toa maoni yaliyo wazi na ya kujenga pamoja na mapendekezo. Saidia watumiaji kuboresha ujuzi wao wa kuandika huku wakihifadhi sauti yao ya kipekee.
"""

CODE_PROMPT = """
You are a senior software developer and coding mentor AI. You assist with:
- Programming in various languages (JavaScript, Python, Java, C++, etc.)
- Code review and optimization
- Debugging and troubleshooting
- Best practices and design patterns
- Algorithm and data structure guidance
- Framework and library recommendations

Provide clean, well-commented code examples with explanations. Focus on teaching good programming practices.
"""

CODE_PROMPT_SW = """
Wewe ni AI msanidi programu mkuu na mwalimu wa uwezeshaji. Unasaidia na:
- Uprogramu katika lugha mbalimbali (JavaScript, Python, Java, C++, n.k.)
- Ukaguzi wa msimbo na uboreshaji
- Utatuzi wa hitilafu na matatizo
- Mazoea bora na mifumo ya muundo
- Mwongozo wa algorithms na muundo wa data
- Mapendekezo ya mfumo na maktaba

Toa mifano safi ya msimbo iliyo na maelezo. Zingatia kufundisha mazoea mazuri ya programu.
"""

GENERAL_PROMPT = """
You are XLYGER AI, a helpful and knowledgeable general-purpose AI assistant. You can help with:
- Answering questions on a wide range of topics
- Problem-solving and analysis
- Research and information gathering
- Creative tasks and brainstorming
- Learning and education support
- General conversation and advice

Be informative, accurate, and engaging. Adapt your communication style to match the user's needs and preferences.
"""

GENERAL_PROMPT_SW = """
Wewe ni XLYGER AI, msaidizi wa AI wa jumla wa kusaidia na maarifa. Unaweza kusaidia na:
- Kujibu maswali juu ya mada mbalimbali
- Utatuzi wa matatizo na uchambuzi
- Utafiti na ukusanyaji wa taarifa
- Kazi za ubunifu na mawazo
- Msaada wa kujifunza na elimu
- Mazungumzo ya jumla na ushauri

Kuwa wa kutoa taarifa, sahihi, na wa kuvutia. Rekebisha mtindo wako wa mawasiliano ili kulingana na mahitaji na mapendeleo ya mtumiaji.
"""


@dataclass(frozen=True)
class Persona:
    id: str
    name: str
    description: str
    system_prompt: str
    translations: Dict[str, str] = field(default_factory=dict, compare=False)

    def prompt_for(self, language: str) -> str:
        """The system prompt in ``language``; English when there is no translation."""
        return self.translations.get(language, self.system_prompt)


PERSONAS = {
    p.id: p
    for p in (
        Persona("beauty", "Beauty & Style",
                "Get expert advice on skincare, makeup, fashion, and personal style",
                BEAUTY_PROMPT, {SWAHILI: BEAUTY_PROMPT_SW}),
        Persona("writing", "Writing Assistant",
                "Improve your writing with grammar, style, and creative assistance",
                WRITING_PROMPT, {SWAHILI: WRITING_PROMPT_SW}),
        Persona("code", "Code Helper",
                "Get help with programming, debugging, and software development",
                CODE_PROMPT, {SWAHILI: CODE_PROMPT_SW}),
        Persona("general", "General AI",
                "Ask anything and get intelligent, helpful responses",
                GENERAL_PROMPT, {SWAHILI: GENERAL_PROMPT_SW}),
    )
}
DEFAULT_PERSONA = "general"


def get_persona(persona_id: str) -> Persona:
    try:
        return PERSONAS[persona_id]
    except KeyError:
        raise KeyError(f"Unknown persona: {persona_id}") from None


def get_language(language: str) -> str:
    code = (language or "").strip().lower()
    if code not in RESPONSE_LANGUAGES:
        raise KeyError(f"Unknown language: {language}")
    return code


# ---------------- Response language ----------------
LANGUAGE_INSTRUCTIONS = {
    ENGLISH: "IMPORTANT: Respond in English.",
    SWAHILI: (
        "IMPORTANT: Respond ONLY in Swahili (Kiswahili cha Tanzania). "
        "All your responses must be in Swahili language."
    ),
}

MEDIA_INSTRUCTIONS = {
    ENGLISH: {
        "image": "User has shared an image.",
        "video": (
            "User has shared a video. Please analyze the video content and provide a detailed text response. "
            "Describe what you see, any actions taking place, the context, and any relevant insights "
            "based on the current mode."
        ),
        "audio": "User has shared an audio recording.",
        "document": "User has shared a document.",
    },
    SWAHILI: {
        "image": "Mtumiaji ameshiriki picha.",
        "video": (
            "Mtumiaji ameshiriki video. Tafadhali changanua maudhui ya video na toa majibu ya kina kwa maandishi. "
            "Eleza unachokiona, vitendo vyovyote vinavyofanyika, muktadha, na maarifa yoyote muhimu "
            "kulingana na hali ya sasa."
        ),
        "audio": "Mtumiaji ameshiriki rekodi ya sauti.",
        "document": "Mtumiaji ameshiriki hati.",
    },
}
MEDIA_DEFAULT_REQUEST = {
    ENGLISH: "Please analyze this {kind} and provide insights based on the current mode.",
    SWAHILI: "Tafadhali changanua faili hili na utoe maarifa kulingana na hali ya sasa.",
}


def language_instruction(language: str) -> str:
    return LANGUAGE_INSTRUCTIONS.get(language, LANGUAGE_INSTRUCTIONS[DEFAULT_LANGUAGE])


def media_prompt(kind: str, request: str, language: str = DEFAULT_LANGUAGE) -> str:
    """What the model is told alongside an inline attachment."""
    instructions = MEDIA_INSTRUCTIONS.get(language, MEDIA_INSTRUCTIONS[DEFAULT_LANGUAGE])
    if kind not in instructions:
        kind = "document"
    lead = instructions[kind]
    if not request:
        template = MEDIA_DEFAULT_REQUEST.get(language, MEDIA_DEFAULT_REQUEST[DEFAULT_LANGUAGE])
        request = template.format(kind=kind)
    return f"{lead} {request}"


# ---------------- Fixed copy ----------------
VOICE_MARKER = "🎤"
NEW_CONVERSATION_TITLE = "New Conversation"
TITLE_MAX_CHARS = 50

APOLOGY_TEXT = (
    "I apologize, but I'm having trouble processing your request right now. "
    "Please try again in a moment."
)
APOLOGY_TEXTS = {
    ENGLISH: APOLOGY_TEXT,
    SWAHILI: "Samahani, nina tatizo la kushughulikia ombi lako sasa hivi. Tafadhali jaribu tena baada ya muda.",
}
TRANSCRIBING_TEXT = f"{VOICE_MARKER} Transcribing your voice message…"
MIC_UNAVAILABLE_TEXT = (
    "I couldn't access your microphone. Please check that it is connected and that access is allowed."
)
MIC_BUSY_TEXT = "The microphone is being used by another session. Please try again when it is free."
VOICE_ERROR_TEXT = {
    "no-speech": "I couldn't understand your voice message. Please try speaking again, a little closer to the microphone.",
    "device": "Audio capture failed. Please check your microphone.",
    "denied": "Microphone access was denied. Please allow microphone access and try again.",
    "network": "A network error interrupted speech recognition. Please try again.",
    "aborted": "Speech recognition was stopped before I heard anything.",
    "language-unsupported": "Your language isn't supported for speech recognition yet. Please try typing instead.",
    "timeout": "I didn't hear anything within 10 seconds. Please try again.",
    "unsupported": "Voice input isn't available on this device. Please try typing instead.",
    "other": "I couldn't process your voice message. Please try typing instead.",
}


def apology_text(language: str) -> str:
    return APOLOGY_TEXTS.get(language, APOLOGY_TEXT)


def welcome_text(persona: Persona) -> str:
    return (
        "Welcome to XLYGER AI! I'm your intelligent assistant. I can help you analyze images, "
        "answer questions, polish your writing, help with code, and much more.\n\n"
        f"Current mode: **{persona.name}** - {persona.description}\n\n"
        "How can I assist you today?"
    )


def new_chat_text(persona: Persona) -> str:
    return f"New chat started in **{persona.name}** mode. {persona.description}\n\nHow can I help you?"


def switch_text(persona: Persona) -> str:
    return f"Switched to **{persona.name}** mode. {persona.description}\n\nHow can I help you in this mode?"
