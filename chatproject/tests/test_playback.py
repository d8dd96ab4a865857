import asyncio

import pytest

from conftest import FakePlayer, FakeSynth
from voiceapp.errors import SynthesisError, UnsupportedError
from voiceapp.playback import SpeechPlaybackController

LONG_TEXT = " ".join(["This sentence is exactly forty chars ok."] * 5)


def local(engine, **kwargs):
    return SpeechPlaybackController(engine=engine, watchdog_interval=0.01, **kwargs)


async def test_empty_text_finishes_immediately(engine):
    done = []
    await local(engine).speak("   ", on_done=lambda: done.append(True))
    assert done == [True]
    assert engine.spoken == []


async def test_nothing_configured_is_unsupported():
    with pytest.raises(UnsupportedError):
        await SpeechPlaybackController().speak("hello")


async def test_local_utterance_uses_selected_voice(engine):
    done = []
    speaker = local(engine)
    await speaker.speak("Hello there.", on_done=lambda: done.append(True))
    assert speaker.is_speaking()
    assert engine.spoken[0].text == "Hello there."
    assert engine.spoken[0].voice.name == "Samantha"

    engine.finish()
    await asyncio.sleep(0)
    assert done == [True]
    assert not speaker.is_speaking()


async def test_long_text_is_spoken_in_order(engine):
    done = []
    speaker = local(engine, chunk_limit=100)
    await speaker.speak(LONG_TEXT, on_done=lambda: done.append(True))

    for expected in range(1, 4):
        assert len(engine.spoken) == expected
        assert not done
        engine.finish()
        await asyncio.sleep(0)

    assert [len(u.text) for u in engine.spoken] == [81, 81, 40]
    assert done == [True]
    assert not speaker.is_speaking()


async def test_stop_cancels_and_drops_late_end_event(engine):
    done = []
    speaker = local(engine)
    await speaker.speak("Hello there.", on_done=lambda: done.append(True))
    speaker.stop()
    assert engine.cancelled == 1
    assert not speaker.is_speaking()

    engine.spoken[0].finish()
    await asyncio.sleep(0)
    assert done == []


async def test_new_speak_supersedes_current(engine):
    first, second = [], []
    speaker = local(engine)
    await speaker.speak("First.", on_done=lambda: first.append(True))
    await speaker.speak("Second.", on_done=lambda: second.append(True))

    engine.spoken[0].finish()
    engine.finish()
    await asyncio.sleep(0)
    assert first == []
    assert second == [True]


async def test_watchdog_resumes_self_paused_engine(engine):
    speaker = local(engine)
    await speaker.speak("Hello there.")
    engine.paused = True
    await asyncio.sleep(0.05)
    assert engine.resumed >= 1
    speaker.stop()


async def test_remote_voice_follows_detected_language():
    synth, player, done = FakeSynth(), FakePlayer(), []
    speaker = SpeechPlaybackController(synthesizer=synth, player=player)
    await speaker.speak("C'est très bien.", on_done=lambda: done.append(True))

    _, voice = synth.requests[0]
    assert voice.language_code == "fr-FR"
    audio, on_end, _, _ = player.played[0]
    assert audio == "C'est très bien.".encode()
    assert speaker.is_speaking()

    on_end()
    await asyncio.sleep(0)
    assert done == [True]
    assert not speaker.is_speaking()


async def test_remote_failure_raises_and_clears_state(engine):
    done = []
    speaker = SpeechPlaybackController(
        synthesizer=FakeSynth(error=SynthesisError("TTS API error: 403")), player=FakePlayer(), engine=engine
    )
    with pytest.raises(SynthesisError):
        await speaker.speak("Hello.", on_done=lambda: done.append(True))
    assert done == [True]
    assert not speaker.is_speaking()
    assert engine.spoken == []


async def test_superseded_synthesis_is_never_played():
    gate = asyncio.Event()
    synth, player = FakeSynth(gate=gate), FakePlayer()
    speaker = SpeechPlaybackController(synthesizer=synth, player=player)

    first = asyncio.create_task(speaker.speak("first"))
    await asyncio.sleep(0)
    second = asyncio.create_task(speaker.speak("second"))
    await asyncio.sleep(0)
    gate.set()
    await asyncio.gather(first, second)

    assert [p[0] for p in player.played] == [b"second"]


async def test_stop_halts_remote_playback():
    synth, player = FakeSynth(), FakePlayer()
    speaker = SpeechPlaybackController(synthesizer=synth, player=player)
    await speaker.speak("hello")
    handle = player.played[0][3]
    speaker.stop()
    assert handle.stopped
    assert not speaker.is_speaking()