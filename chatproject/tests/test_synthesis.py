import base64
import json
import threading
from types import SimpleNamespace

import httpx
import pytest

from voiceapp.errors import SynthesisError
from voiceapp.language import LANGUAGE_VOICES
from voiceapp.playback import Utterance
from voiceapp.synthesis import CloudTtsClient, Pyttsx3Engine


def tts_client(handler):
    return CloudTtsClient("test-key", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


async def test_synthesize_posts_voice_and_decodes_audio():
    seen = {}

    def handler(request):
        seen["url"] = request.url
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"audioContent": base64.b64encode(b"RIFFdata").decode()})

    client = tts_client(handler)
    audio = await client.synthesize("Bonjour", LANGUAGE_VOICES["fr"])
    await client.aclose()

    assert audio == b"RIFFdata"
    assert seen["url"].params["key"] == "test-key"
    assert seen["body"]["voice"] == {"languageCode": "fr-FR", "name": "fr-FR-Neural2-B", "ssmlGender": "MALE"}
    assert seen["body"]["audioConfig"]["audioEncoding"] == "LINEAR16"
    assert seen["body"]["input"] == {"text": "Bonjour"}


@pytest.mark.parametrize("response", [
    httpx.Response(403, json={"error": {"message": "API key not valid"}}),
    httpx.Response(200, json={}),
    httpx.Response(200, text="<html>oops</html>"),
    httpx.Response(200, json={"audioContent": "not base64!!"}),
])
async def test_bad_responses_raise_synthesis_error(response):
    client = tts_client(lambda request: response)
    with pytest.raises(SynthesisError):
        await client.synthesize("Hello", LANGUAGE_VOICES["en"])


async def test_transport_error_raises_synthesis_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(SynthesisError):
        await tts_client(handler).synthesize("Hello", LANGUAGE_VOICES["en"])


class FakePyttsx3:
    def __init__(self, fail=False):
        self.fail = fail
        self.props = {
            "rate": 200,
            "voice": "v1",
            "voices": [
                SimpleNamespace(id="v1", name="English", languages=[b"\x05en-us"]),
                SimpleNamespace(id="v2", name="French", languages=["fr_FR"]),
            ],
        }
        self.said = []
        self.stopped = False

    def getProperty(self, name):
        return self.props[name]

    def setProperty(self, name, value):
        self.props[name] = value

    def say(self, text):
        self.said.append(text)

    def runAndWait(self):
        if self.fail:
            raise RuntimeError("run loop already started")

    def stop(self):
        self.stopped = True


def test_voices_are_mapped_with_languages():
    voices = Pyttsx3Engine(FakePyttsx3()).get_voices()
    assert [(v.name, v.lang, v.default) for v in voices] == [("English", "en-us", True), ("French", "fr-FR", False)]


def test_utterance_runs_and_reports_end():
    fake = FakePyttsx3()
    engine = Pyttsx3Engine(fake)
    ended = threading.Event()
    voice = engine.get_voices()[1]
    engine.speak(Utterance("Salut", voice=voice, rate=1.5, on_end=ended.set))

    assert ended.wait(2)
    assert fake.said == ["Salut"]
    assert fake.props["voice"] == "v2"
    assert fake.props["rate"] == 300
    assert not engine.speaking


def test_engine_failure_reports_error():
    engine = Pyttsx3Engine(FakePyttsx3(fail=True))
    errors = []
    failed = threading.Event()

    def on_error(exc):
        errors.append(exc)
        failed.set()

    engine.speak(Utterance("Hello", on_error=on_error))
    assert failed.wait(2)
    assert isinstance(errors[0], RuntimeError)


def test_cancel_stops_engine():
    fake = FakePyttsx3()
    engine = Pyttsx3Engine(fake)
    engine.cancel()
    assert fake.stopped
    assert not engine.paused


class BlockingPyttsx3(FakePyttsx3):
    """Each runAndWait blocks until its own gate opens."""

    def __init__(self, runs=2):
        super().__init__()
        self.gates = [threading.Event() for _ in range(runs)]
        self.entered = [threading.Event() for _ in range(runs)]
        self.runs = 0

    def runAndWait(self):
        index = self.runs
        self.runs += 1
        self.entered[index].set()
        self.gates[index].wait(2)


def test_superseded_utterance_keeps_new_one_speaking():
    fake = BlockingPyttsx3()
    engine = Pyttsx3Engine(fake)
    first_done, second_done = threading.Event(), threading.Event()

    engine.speak(Utterance("First", on_end=first_done.set))
    assert fake.entered[0].wait(2)
    engine.cancel()
    engine.speak(Utterance("Second", on_end=second_done.set))
    assert engine.speaking

    fake.gates[0].set()
    assert first_done.wait(2)
    assert engine.speaking

    assert fake.entered[1].wait(2)
    fake.gates[1].set()
    assert second_done.wait(2)
    assert not engine.speaking
