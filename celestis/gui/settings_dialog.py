"""
Settings Dialog - edits the user settings record.
"""

import logging
import tkinter as tk
from tkinter import messagebox, ttk
from typing import Callable, Iterable, Optional

from pydantic import ValidationError

from ..core.settings import TEMPLATE_PRESETS, UserSettings, apply_preset

logger = logging.getLogger(__name__)

SUGGESTED_MODELS = [
    "meta-llama/llama-4-maverick:free",
    "deepseek/deepseek-chat-v3-0324:free",
    "google/gemini-2.0-flash-exp:free",
    "mistralai/mistral-small-3.1-24b-instruct:free",
    "openai/gpt-4o-mini",
    "anthropic/claude-3.5-haiku",
]

VOICE_LANGUAGES = [
    "en-US", "en-GB", "es-ES", "fr-FR", "de-DE", "it-IT",
    "pt-BR", "ja-JP", "ko-KR", "zh-CN", "ru-RU", "hi-IN",
]

class SettingsDialog:
    """Modal settings window. ``on_save`` receives the new settings record."""

    def __init__(self, parent: tk.Misc, settings: UserSettings,
                 on_save: Callable[[UserSettings], None]):
        self.parent = parent
        self.settings = settings
        self.on_save = on_save
        self.top: Optional[tk.Toplevel] = None
        self.template_text: Optional[tk.Text] = None
        self.model_box: Optional[ttk.Combobox] = None

    def show(self):
        self.top = tk.Toplevel(self.parent)
        self.top.title("Settings")
        self.top.transient(self.parent)
        self.top.resizable(False, False)

        s = self.settings
        self.api_key_var = tk.StringVar(value=s.openrouter_api_key)
        self.model_var = tk.StringVar(value=s.ai_model)
        self.language_var = tk.StringVar(value=s.voice_language)
        self.renderer_var = tk.StringVar(value=s.renderer_engine)
        self.timeout_var = tk.StringVar(value=str(s.renderer_timeout_ms))
        self.scroll_var = tk.BooleanVar(value=s.avatar_scroll)
        self.in_chat_var = tk.BooleanVar(value=s.avatar_in_chat)

        form = ttk.Frame(self.top, padding=12)
        form.pack(fill=tk.BOTH, expand=True)

        self.model_box = ttk.Combobox(form, textvariable=self.model_var, values=SUGGESTED_MODELS, width=46)
        rows = [
            ("OpenRouter API Key", ttk.Entry(form, textvariable=self.api_key_var, show="*", width=48)),
            ("AI Model", self.model_box),
            ("Voice Language", ttk.Combobox(form, textvariable=self.language_var, values=VOICE_LANGUAGES, width=46)),
            ("Renderer", ttk.Combobox(form, textvariable=self.renderer_var, values=["3d", "2d"],
                                      state="readonly", width=46)),
            ("Renderer Timeout (ms)", ttk.Spinbox(form, textvariable=self.timeout_var, from_=1000,
                                                  to=120000, increment=1000, width=46)),
        ]
        for row, (label, widget) in enumerate(rows):
            ttk.Label(form, text=label).grid(row=row, column=0, sticky=tk.W, pady=3)
            widget.grid(row=row, column=1, sticky=tk.EW, pady=3)

        row = len(rows)
        ttk.Checkbutton(form, text="Avatar follows chat scroll", variable=self.scroll_var).grid(
            row=row, column=1, sticky=tk.W)
        ttk.Checkbutton(form, text="Show avatar inside chat", variable=self.in_chat_var).grid(
            row=row + 1, column=1, sticky=tk.W)

        ttk.Label(form, text="Initial Template").grid(row=row + 2, column=0, sticky=tk.NW, pady=(8, 0))
        self.template_text = tk.Text(form, width=56, height=6, wrap=tk.WORD)
        self.template_text.insert("1.0", s.initial_template)
        self.template_text.grid(row=row + 2, column=1, sticky=tk.EW, pady=(8, 0))

        presets = ttk.Frame(form)
        presets.grid(row=row + 3, column=1, sticky=tk.W, pady=4)
        for name in TEMPLATE_PRESETS:
            ttk.Button(presets, text=name.title(), command=lambda n=name: self.apply_preset(n)).pack(
                side=tk.LEFT, padx=(0, 4))

        buttons = ttk.Frame(form)
        buttons.grid(row=row + 4, column=0, columnspan=2, sticky=tk.E, pady=(12, 0))
        ttk.Button(buttons, text="Cancel", command=self.close).pack(side=tk.RIGHT)
        ttk.Button(buttons, text="Save", command=self.save).pack(side=tk.RIGHT, padx=(0, 6))

        self.top.grab_set()

    @property
    def is_open(self) -> bool:
        return self.top is not None

    def set_model_choices(self, models: Iterable[str]):
        """Offer the suggested models first, then everything else the key can use."""
        extra = sorted(set(models) - set(SUGGESTED_MODELS))
        if self.model_box is not None and self.is_open:
            self.model_box.configure(values=SUGGESTED_MODELS + extra)
            logger.debug(f"Model list extended with {len(extra)} OpenRouter models")

    def apply_preset(self, name: str):
        draft = apply_preset(self.settings.model_copy(), name)
        self.template_text.delete("1.0", tk.END)
        self.template_text.insert("1.0", draft.initial_template)

    def save(self):
        try:
            settings = UserSettings(
                openrouter_api_key=self.api_key_var.get(),
                ai_model=self.model_var.get().strip(),
                voice_language=self.language_var.get().strip(),
                renderer_engine=self.renderer_var.get(),
                renderer_timeout_ms=self.timeout_var.get(),
                avatar_scroll=self.scroll_var.get(),
                avatar_in_chat=self.in_chat_var.get(),
                initial_template=self.template_text.get("1.0", tk.END).strip(),
                previous_renderer=self.settings.previous_renderer,
            )
        except ValidationError as e:
            logger.warning(f"Invalid settings: {e}")
            messagebox.showerror("Settings", f"Invalid settings:\n{e}", parent=self.top)
            return

        self.on_save(settings)
        self.close()

    def close(self):
        if self.top is not None:
            self.top.grab_release()
            self.top.destroy()
            self.top = None
