"""
Chat Window - the main desktop window.

Chat transcript and input on the left, the avatar panel either floating on
the right edge or docked inside the chat area. The window is pumped from the
application's asyncio loop via ``process_events``; UI callbacks that need to
await are scheduled as tasks on that loop.
"""

import asyncio
import logging
import tkinter as tk
import tkinter.font as tkfont
from tkinter import filedialog, ttk
from typing import Awaitable, Callable, List, Optional, Tuple

from PIL import Image, ImageTk

from ..ai.conversation import ChatMessage
from ..graphics.layout import floating_panel_origin, in_chat_overlay_height, scroll_parallax_shift
from ..integrations.files import IMPORT_FILE_TYPES

logger = logging.getLogger(__name__)

AsyncCallback = Callable[..., Awaitable[None]]

MESSAGE_STYLES = {
    "user": {"foreground": "#1d3557", "lmargin1": 120, "lmargin2": 120, "justify": "right"},
    "ai": {"foreground": "#2b2d42", "lmargin1": 8, "lmargin2": 8, "rmargin": 120},
    "system": {"foreground": "#8d0801", "justify": "center"},
}

class ChatWindow:
    """Tkinter main window with menu, chat area and avatar panel."""

    def __init__(self, title: str = "Celestis AI Avatar", width: int = 1200, height: int = 800,
                 avatar_size: Tuple[int, int] = (420, 560)):
        self.title = title
        self.width = width
        self.height = height
        self.avatar_size = avatar_size

        self.root: Optional[tk.Tk] = None
        self.canvas: Optional[tk.Canvas] = None
        self.transcript: Optional[tk.Text] = None
        self.input_var: Optional[tk.StringVar] = None
        self.voice_status_var: Optional[tk.StringVar] = None
        self.avatar_status_var: Optional[tk.StringVar] = None
        self.internal_avatar_var: Optional[tk.StringVar] = None
        self.mic_button: Optional[ttk.Button] = None
        self.avatar_panel: Optional[tk.Frame] = None
        self.chat_frame: Optional[ttk.Frame] = None
        self.internal_avatar_box: Optional[ttk.Combobox] = None

        self.closed = False
        self.avatar_in_chat = False
        self.avatar_scroll = True
        self._fullscreen = False
        self._zoom = 0
        self._base_font_size = 11
        self._chat_font: Optional[tkfont.Font] = None
        self._photo: Optional[ImageTk.PhotoImage] = None
        self._image_item: Optional[int] = None

        # Event callbacks, assigned by the application
        self.on_send: Optional[AsyncCallback] = None
        self.on_mic: Optional[AsyncCallback] = None
        self.on_clear: Optional[AsyncCallback] = None
        self.on_import: Optional[AsyncCallback] = None
        self.on_settings: Optional[Callable[[], None]] = None
        self.on_internal_avatar: Optional[AsyncCallback] = None
        self.on_close: Optional[AsyncCallback] = None

        logger.info("Chat window created")

    async def initialize(self):
        """Build the widgets."""
        self.root = tk.Tk()
        self.root.title(self.title)
        self.root.geometry(f"{self.width}x{self.height}")
        self.root.minsize(720, 480)
        self.root.protocol("WM_DELETE_WINDOW", self._on_close_event)

        self._chat_font = tkfont.Font(family="Segoe UI", size=self._base_font_size)
        self.input_var = tk.StringVar()
        self.voice_status_var = tk.StringVar()
        self.avatar_status_var = tk.StringVar(value="Initializing application...")
        self.internal_avatar_var = tk.StringVar()

        self._build_menu()
        self._build_chat()
        self._build_avatar_panel()

        self.root.bind("<Configure>", lambda e: self._place_avatar_panel())
        self.root.update_idletasks()
        self._place_avatar_panel()
        logger.info("Chat window initialized")

    def _build_menu(self):
        menubar = tk.Menu(self.root)

        file_menu = tk.Menu(menubar, tearoff=False)
        file_menu.add_command(label="Import 3D Model", command=lambda: self.spawn(self.on_import))
        file_menu.add_command(label="Settings", command=self._open_settings)
        file_menu.add_separator()
        file_menu.add_command(label="Exit", command=self._on_close_event)
        menubar.add_cascade(label="File", menu=file_menu)

        view_menu = tk.Menu(menubar, tearoff=False)
        view_menu.add_command(label="Reset Zoom", command=lambda: self.set_zoom(0))
        view_menu.add_command(label="Zoom In", command=lambda: self.set_zoom(self._zoom + 1))
        view_menu.add_command(label="Zoom Out", command=lambda: self.set_zoom(self._zoom - 1))
        view_menu.add_separator()
        view_menu.add_command(label="Toggle Full Screen", command=self.toggle_fullscreen)
        menubar.add_cascade(label="View", menu=view_menu)

        self.root.config(menu=menubar)

    def _build_chat(self):
        self.chat_frame = ttk.Frame(self.root, padding=8)
        self.chat_frame.place(relx=0, rely=0, relwidth=0.62, relheight=1.0)

        text_frame = ttk.Frame(self.chat_frame)
        text_frame.pack(fill=tk.BOTH, expand=True)

        scrollbar = ttk.Scrollbar(text_frame, orient=tk.VERTICAL)
        self.transcript = tk.Text(
            text_frame, wrap=tk.WORD, state=tk.DISABLED, font=self._chat_font,
            yscrollcommand=self._on_transcript_scroll(scrollbar), relief=tk.FLAT, padx=8, pady=8
        )
        scrollbar.config(command=self.transcript.yview)
        scrollbar.pack(side=tk.RIGHT, fill=tk.Y)
        self.transcript.pack(side=tk.LEFT, fill=tk.BOTH, expand=True)
        for kind, style in MESSAGE_STYLES.items():
            self.transcript.tag_configure(kind, spacing1=6, spacing3=6, **style)

        input_row = ttk.Frame(self.chat_frame)
        input_row.pack(fill=tk.X, pady=(8, 0))
        entry = ttk.Entry(input_row, textvariable=self.input_var, font=self._chat_font)
        entry.pack(side=tk.LEFT, fill=tk.X, expand=True)
        entry.bind("<Return>", lambda e: self._submit())
        entry.focus_set()

        ttk.Button(input_row, text="Send", command=self._submit).pack(side=tk.LEFT, padx=(6, 0))
        self.mic_button = ttk.Button(input_row, text="🎤 Mic", command=lambda: self.spawn(self.on_mic))
        self.mic_button.pack(side=tk.LEFT, padx=(6, 0))
        ttk.Button(input_row, text="Clear", command=lambda: self.spawn(self.on_clear)).pack(side=tk.LEFT, padx=(6, 0))

        ttk.Label(self.chat_frame, textvariable=self.voice_status_var, foreground="#6c757d").pack(anchor=tk.W)

    def _build_avatar_panel(self):
        width, height = self.avatar_size
        self.avatar_panel = tk.Frame(self.root, bg="#1a2036")

        self.canvas = tk.Canvas(self.avatar_panel, width=width, height=height, bg="#1a2036", highlightthickness=0)
        self.canvas.pack(fill=tk.BOTH, expand=True)

        footer = tk.Frame(self.avatar_panel, bg="#1a2036")
        footer.pack(fill=tk.X)
        tk.Label(footer, textvariable=self.avatar_status_var, bg="#1a2036", fg="#e0e1dd",
                 anchor=tk.W).pack(side=tk.LEFT, fill=tk.X, expand=True, padx=6)

        self.internal_avatar_box = ttk.Combobox(
            footer, textvariable=self.internal_avatar_var, state="readonly", width=22
        )
        self.internal_avatar_box.set("Internal Avatars...")
        self.internal_avatar_box.bind("<<ComboboxSelected>>", self._on_internal_avatar_selected)
        self.internal_avatar_box.pack(side=tk.RIGHT, padx=6, pady=4)

    def _on_transcript_scroll(self, scrollbar: ttk.Scrollbar):
        def handler(first, last):
            scrollbar.set(first, last)
            if self.avatar_scroll and not self.avatar_in_chat:
                self._place_avatar_panel()
        return handler

    def _place_avatar_panel(self):
        """Dock the avatar panel inside the chat or float it on the right edge."""
        if self.root is None or self.avatar_panel is None:
            return
        win_w = max(self.root.winfo_width(), 1)
        win_h = max(self.root.winfo_height(), 1)
        panel_w, panel_h = self.avatar_size

        if self.avatar_in_chat:
            chat_h = self.chat_frame.winfo_height() or win_h
            height = int(in_chat_overlay_height(chat_h))
            width = int(height * panel_w / max(panel_h, 1))
            self.avatar_panel.place(in_=self.chat_frame, relx=1.0, x=-24, y=8, anchor=tk.NE,
                                    width=width, height=height)
            return

        panel_h = min(panel_h, win_h)
        x, y = floating_panel_origin((win_w, win_h), (panel_w, panel_h))
        if self.avatar_scroll and self.transcript is not None:
            first, last = self.transcript.yview()
            visible = max(last - first, 0.0001)
            # Express the Text scroll position as pixels of a virtual document
            document_h = win_h / visible
            y += int(scroll_parallax_shift(first * document_h, document_h, win_h))
        self.avatar_panel.place(in_=self.root, x=x, y=y, width=panel_w, height=panel_h, anchor=tk.NW)

    def apply_layout(self, avatar_in_chat: bool, avatar_scroll: bool):
        self.avatar_in_chat = avatar_in_chat
        self.avatar_scroll = avatar_scroll
        self._place_avatar_panel()

    def avatar_canvas_size(self) -> Tuple[int, int]:
        if self.canvas is None:
            return self.avatar_size
        width, height = self.canvas.winfo_width(), self.canvas.winfo_height()
        # Not mapped yet
        if width <= 1 or height <= 1:
            return self.avatar_size
        return width, height

    def spawn(self, callback: Optional[AsyncCallback], *args):
        """Run an async callback from a Tk handler; failures are logged."""
        if callback is None:
            return
        task = asyncio.ensure_future(callback(*args))
        task.add_done_callback(self._report_task_error)

    @staticmethod
    def _report_task_error(task: asyncio.Future):
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"UI action failed: {task.exception()}", exc_info=task.exception())

    def _submit(self):
        text = self.input_var.get()
        if not text.strip():
            return
        self.input_var.set("")
        self.spawn(self.on_send, text)

    def _open_settings(self):
        if self.on_settings:
            self.on_settings()

    def _on_internal_avatar_selected(self, event=None):
        name = self.internal_avatar_var.get()
        if name and name != "Internal Avatars...":
            self.spawn(self.on_internal_avatar, name)

    def _on_close_event(self):
        if self.closed:
            return
        self.closed = True
        self.spawn(self.on_close)

    def add_message(self, message: ChatMessage):
        self.transcript.configure(state=tk.NORMAL)
        self.transcript.insert(tk.END, message.content + "\n", message.kind)
        self.transcript.configure(state=tk.DISABLED)
        self.transcript.see(tk.END)

    def clear_messages(self):
        self.transcript.configure(state=tk.NORMAL)
        self.transcript.delete("1.0", tk.END)
        self.transcript.configure(state=tk.DISABLED)

    def set_input_text(self, text: str):
        self.input_var.set(text)

    def set_voice_status(self, text: str):
        self.voice_status_var.set(text)

    def set_avatar_status(self, text: str):
        self.avatar_status_var.set(text)

    def set_recording(self, recording: bool):
        self.mic_button.configure(text="⏹ Stop" if recording else "🎤 Mic")

    def set_internal_avatars(self, names: List[str]):
        self.internal_avatar_box["values"] = names

    def ask_model_file(self) -> Optional[str]:
        path = filedialog.askopenfilename(parent=self.root, title="Import 3D Model", filetypes=IMPORT_FILE_TYPES)
        return path or None

    def show_frame(self, image: Image.Image):
        """Draw a rendered avatar frame on the canvas."""
        if self.canvas is None:
            return
        self._photo = ImageTk.PhotoImage(image)
        if self._image_item is None:
            self._image_item = self.canvas.create_image(0, 0, anchor=tk.NW, image=self._photo)
        else:
            self.canvas.itemconfigure(self._image_item, image=self._photo)

    def set_zoom(self, level: int):
        self._zoom = max(-4, min(level, 8))
        self._chat_font.configure(size=self._base_font_size + self._zoom)

    def toggle_fullscreen(self):
        self._fullscreen = not self._fullscreen
        self.root.attributes("-fullscreen", self._fullscreen)

    async def process_events(self):
        """Pump pending Tk events."""
        if self.root is None or self.closed:
            return
        try:
            self.root.update()
        except tk.TclError as e:
            logger.info(f"Window no longer available: {e}")
            self.closed = True
            if self.on_close:
                await self.on_close()

    async def shutdown(self):
        if self.root is not None:
            try:
                self.root.destroy()
            except tk.TclError:
                pass
            self.root = None
        logger.info("Chat window closed")
