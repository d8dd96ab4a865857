import asyncio
import logging

from django.core.management.base import BaseCommand

from voiceapp.errors import ValidationError

from chatapp.constants import PERSONAS, RESPONSE_LANGUAGES
from chatapp.media import Attachment
from chatapp.messages import ASSISTANT
from chatapp.services import build_orchestrator

# Reduce logging noise
logging.getLogger("google.genai").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)

HELP_TEXT = """Commands:
  /persona <id>        switch persona ({personas})
  /language <code>     reply language ({languages})
  /new                 start a new chat
  /record              start recording (/pause, /resume, /stop)
  /speak               read the last reply aloud (again to stop)
  /attach <path> [msg] send a file with an optional caption
  /save                save or update this conversation
  /list                list saved conversations
  /load <id>           load a saved conversation
  /delete <id>         delete a saved conversation
  /quit                exit
"""


class Command(BaseCommand):
    help = 'Chat with the assistant in the terminal.'

    def add_arguments(self, parser):
        parser.add_argument('--persona', default=None, help='Persona to start with.')
        parser.add_argument('--no-voice', action='store_true', help='Text only; skip microphone and speech.')

    def handle(self, *args, **options):
        """The main entry point for the Django management command."""
        self.stdout.write(self.style.SUCCESS("🚀 Initializing assistant..."))
        try:
            asyncio.run(self.run_chat(options))
        except KeyboardInterrupt:
            self.stdout.write("\nBye.")

    def on_event(self, event, data):
        if event == "message.appended":
            message = data["message"]
            if message["role"] == ASSISTANT:
                self.stdout.write(self.style.SUCCESS(f"🤖 Assistant: {message['content']}"))
            elif message["pending"]:
                self.stdout.write(self.style.HTTP_INFO(message["content"]))
            else:
                self.stdout.write(f"👤 You: {message['content']}")
        elif event == "persona":
            self.stdout.write(self.style.HTTP_INFO(f"[persona: {data['persona']}]"))
        elif event == "language":
            self.stdout.write(self.style.HTTP_INFO(f"[language: {data['language']}]"))
        elif event == "recording":
            self.stdout.write(self.style.HTTP_INFO(f"[recording: {data['state']}]"))
        elif event == "save":
            style = self.style.ERROR if data["status"] == "error" else self.style.HTTP_INFO
            self.stdout.write(style(f"[save: {data['status']} {data.get('conversation_id') or ''}]"))

    async def run_chat(self, options):
        chat = build_orchestrator(self.on_event, voice=not options['no_voice'])
        if options['persona']:
            chat.change_persona(options['persona'])
        chat.welcome()
        self.stdout.write(HELP_TEXT.format(personas=", ".join(PERSONAS), languages=", ".join(RESPONSE_LANGUAGES)))

        try:
            while True:
                line = (await asyncio.to_thread(input, "> ")).strip()
                if not line:
                    continue
                if not line.startswith("/"):
                    await chat.send_message(line)
                    continue
                if await self.run_command(chat, line) is False:
                    break
        except EOFError:
            pass
        finally:
            await chat.shutdown()

    async def run_command(self, chat, line):
        name, _, arg = line[1:].partition(" ")
        arg = arg.strip()

        if name in ("quit", "exit"):
            return False
        if name == "persona":
            try:
                chat.change_persona(arg)
            except KeyError as e:
                self.stdout.write(self.style.ERROR(str(e)))
        elif name == "language":
            try:
                chat.set_language(arg)
            except KeyError as e:
                self.stdout.write(self.style.ERROR(str(e)))
        elif name == "new":
            chat.new_chat()
        elif name == "record":
            await chat.start_recording()
        elif name == "pause":
            chat.pause_recording()
        elif name == "resume":
            chat.resume_recording()
        elif name == "stop":
            chat.stop_recording()
        elif name == "speak":
            last = next((m for m in reversed(chat.messages) if m.role == ASSISTANT), None)
            if last is not None:
                await chat.toggle_speech(last.id)
        elif name == "attach":
            path, _, caption = arg.partition(" ")
            try:
                attachment = Attachment.from_path(path)
                await chat.send_message(caption, attachment)
            except OSError as e:
                self.stdout.write(self.style.ERROR(f"Cannot read {path}: {e}"))
            except ValidationError as e:
                self.stdout.write(self.style.ERROR(str(e)))
        elif name == "save":
            await chat.save_conversation()
        elif name == "list":
            for c in await chat.list_conversations():
                self.stdout.write(f"{c.id}  {c.updated_at:%Y-%m-%d %H:%M}  [{c.persona}] {c.title}")
        elif name == "load":
            if not await chat.load_conversation(arg):
                self.stdout.write(self.style.ERROR("Conversation could not be loaded."))
        elif name == "delete":
            ok = await chat.delete_conversation(arg)
            self.stdout.write(self.style.SUCCESS("Deleted.") if ok else self.style.ERROR("Delete failed."))
        else:
            self.stdout.write(self.style.WARNING(f"Unknown command: /{name}"))
        return True
