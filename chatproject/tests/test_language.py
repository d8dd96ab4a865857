import pytest

from voiceapp.language import (
    LANGUAGE_VOICES,
    Voice,
    detect_language,
    select_voice,
    split_into_chunks,
    voice_for_language,
)


@pytest.mark.parametrize("text,language", [
    ("Habari yako? Asante sana rafiki.", "sw"),
    ("C'est très bien, merci.", "fr"),
    ("¿Cómo estás, amigo?", "es"),
    ("Hello there, how are you?", "en"),
    ("Karibu!", "en"),
])
def test_detect_language(text, language):
    assert detect_language(text) == language


def test_unknown_language_falls_back_to_english_voice():
    assert voice_for_language("de") == LANGUAGE_VOICES["en"]
    assert voice_for_language("fr").language_code == "fr-FR"


def test_select_voice_prefers_known_good_in_language():
    voices = [
        Voice("eSpeak English", "en-US", default=True),
        Voice("Microsoft Aria Online (Natural) - English (United States)", "en-US"),
        Voice("Samantha", "en-US"),
    ]
    assert select_voice(voices, "en-US").name == "Microsoft Aria Online (Natural) - English (United States)"


def test_select_voice_ladder_fallbacks():
    natural = Voice("Hortense Natural", "fr-FR")
    default_fr = Voice("fr voice", "fr-FR", default=True)
    plain_fr = Voice("other fr", "fr_FR")
    english = Voice("eSpeak English", "en-GB")
    german = Voice("Anna", "de-DE")

    assert select_voice([default_fr, natural], "fr-FR") is natural
    assert select_voice([plain_fr, default_fr], "fr-FR") is default_fr
    assert select_voice([german, plain_fr], "fr-CA") is plain_fr
    assert select_voice([german, english], "sw-KE") is english
    assert select_voice([german], "sw-KE") is german
    assert select_voice([], "en-US") is None


def test_short_text_is_one_chunk():
    assert split_into_chunks("Just one line.", 200) == ["Just one line."]
    assert split_into_chunks("   ", 200) == []


def test_sentences_are_packed_up_to_limit():
    sentence = "This sentence is exactly forty chars ok."
    text = " ".join([sentence] * 5)
    chunks = split_into_chunks(text, 100)
    assert chunks == [f"{sentence} {sentence}", f"{sentence} {sentence}", sentence]
    assert all(len(c) <= 100 for c in chunks)


def test_overlong_sentence_is_kept_whole():
    long_sentence = "word " * 60 + "end."
    text = f"Short start. {long_sentence.strip()} Short end."
    chunks = split_into_chunks(text, 50)
    assert chunks == ["Short start.", long_sentence.strip(), "Short end."]
