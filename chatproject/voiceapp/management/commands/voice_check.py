import asyncio
import logging

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from voiceapp.errors import ChatError, DeviceError, RecognitionError, TranscriptionTimeoutError
from voiceapp.playback import SpeechPlaybackController
from voiceapp.recorder import RecordingSession
from voiceapp.transcription import SpeechRecognitionBackend, TranscriptionClient

logging.getLogger("httpx").setLevel(logging.WARNING)


class Command(BaseCommand):
    help = 'Checks the host audio stack: records, transcribes, and speaks the transcript back.'

    def add_arguments(self, parser):
        parser.add_argument('--seconds', type=float, default=3.0, help='How long to record.')
        parser.add_argument('--skip-record', action='store_true')
        parser.add_argument('--skip-speak', action='store_true')

    def handle(self, *args, **options):
        """The main entry point for the Django management command."""
        self.voice = getattr(settings, "VOICE_SETTINGS", {}) or {}
        try:
            asyncio.run(self.run_checks(options))
        except ChatError as e:
            raise CommandError(str(e)) from e

    async def run_checks(self, options):
        if not options['skip_record']:
            await self.check_recording(options['seconds'])
        text = await self.check_transcription()
        if text and not options['skip_speak']:
            await self.check_speech(f"You said: {text}")
        self.stdout.write(self.style.SUCCESS("✅ Voice check finished."))

    async def check_recording(self, seconds):
        from voiceapp.audio_io import PyAudioMicrophone

        clips = []

        def on_tick(duration_ms, level):
            bar = "#" * int(level * 40)
            self.stdout.write(f"\r{duration_ms / 1000:5.1f}s |{bar:<40}|", ending="")

        session = RecordingSession(
            PyAudioMicrophone(device_index=self.voice.get("INPUT_DEVICE_INDEX")),
            on_data_available=clips.append,
            on_tick=on_tick,
        )
        self.stdout.write(self.style.HTTP_INFO(f"\nRecording {seconds:.1f}s..."))
        try:
            await session.start()
        except DeviceError as e:
            self.stdout.write(self.style.ERROR(f"Microphone error: {e}"))
            return
        await asyncio.sleep(seconds)
        session.stop()
        self.stdout.write("")
        if clips:
            clip = clips[0]
            self.stdout.write(self.style.SUCCESS(
                f"🎙️ Captured {clip.duration_ms}ms, {clip.size} bytes @ {clip.sample_rate}Hz"
            ))

    async def check_transcription(self):
        client = TranscriptionClient(
            SpeechRecognitionBackend(),
            timeout=self.voice.get("TRANSCRIBE_TIMEOUT_S", 10.0),
            language=self.voice.get("LANGUAGE"),
        )
        if not client.supported:
            self.stdout.write(self.style.WARNING("Speech recognition is not available on this host."))
            return ""
        self.stdout.write(self.style.HTTP_INFO("\nListening... say something."))
        try:
            text = await client.transcribe()
        except RecognitionError as e:
            self.stdout.write(self.style.ERROR(f"Recognition failed ({e.kind.value}): {e}"))
            return ""
        except TranscriptionTimeoutError:
            self.stdout.write(self.style.ERROR("Nothing heard before the timeout."))
            return ""
        self.stdout.write(f"👤 You said: {text}")
        return text

    async def check_speech(self, text):
        from voiceapp.synthesis import Pyttsx3Engine

        done = asyncio.Event()
        speaker = SpeechPlaybackController(engine=Pyttsx3Engine(), language=self.voice.get("LANGUAGE"))
        self.stdout.write(self.style.SUCCESS(f"🤖 Assistant: {text}"))
        await speaker.speak(text, on_done=done.set)
        try:
            await asyncio.wait_for(done.wait(), timeout=30)
        except asyncio.TimeoutError:
            speaker.stop()
            self.stdout.write(self.style.WARNING("Speech did not finish within 30s."))
