import logging
import os
import sys
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Optional

from PySide6.QtCore import QEvent, QSettings, QTimer, Qt, Signal
from PySide6.QtGui import QAction, QColor, QFont, QFontDatabase, QIcon, QPalette
from PySide6.QtWidgets import (
    QApplication,
    QColorDialog,
    QDialog,
    QFormLayout,
    QFrame,
    QGridLayout,
    QGroupBox,
    QHBoxLayout,
    QLabel,
    QMainWindow,
    QMenu,
    QPushButton,
    QSpinBox,
    QVBoxLayout,
    QWidget,
)

from countdown import LOGGER, CountdownSnapshot, RefreshScheduler

APP_DIR = os.path.dirname(os.path.abspath(__file__))
SETTINGS_PATH = os.path.join(APP_DIR, "settings.ini")
LOG_PATH = os.path.join(APP_DIR, "debug.log")
ICON_PATH = os.path.join(APP_DIR, "icon.png")

WINDOW_TITLE = "Year of Synchronicity"
WINDOW_WIDTH = 360
WINDOW_HEIGHT = 110
CARD_MIN_SIZE = 80
CARD_RADIUS = 5
REFRESH_MINUTES_MIN = 1
REFRESH_MINUTES_MAX = 60

COLOR_KEYS = (
    ("colors/background", "bg_color"),
    ("colors/button", "button_color"),
    ("colors/foreground", "fg_color"),
    ("colors/accent", "accent_color"),
    ("colors/card", "card_color"),
    ("colors/card_text", "card_text_color"),
)


@dataclass
class UiSettings:
    refresh_minutes: int = 1
    bg_color: QColor = field(default_factory=lambda: QColor("#0f0f28"))
    button_color: QColor = field(default_factory=lambda: QColor("#000080"))
    fg_color: QColor = field(default_factory=lambda: QColor("#dcdcff"))
    accent_color: QColor = field(default_factory=lambda: QColor("#6495ed"))
    card_color: QColor = field(default_factory=lambda: QColor("#dcdcff"))
    card_text_color: QColor = field(default_factory=lambda: QColor("#0f0f28"))
    title_size: int = 12
    value_size: int = 32
    always_on_top: bool = False


def qcolor_to_hex(color: QColor) -> str:
    return color.name(QColor.HexRgb)


def hex_to_qcolor(value: object, fallback: QColor) -> QColor:
    color = QColor(str(value))
    if not color.isValid():
        return fallback
    return color


def default_font_family() -> str:
    if sys.platform == "win32":
        return "Segoe UI"
    try:
        return QFontDatabase.systemFont(QFontDatabase.GeneralFont).family()
    except Exception:
        return "Sans Serif"


def parse_bool(value: object, fallback: bool) -> bool:
    if value is None:
        return fallback
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return fallback


def read_int_setting(
    settings: QSettings, key: str, fallback: Optional[int]
) -> Optional[int]:
    value = settings.value(key, fallback)
    if value is None:
        return fallback
    try:
        return int(value)
    except (TypeError, ValueError):
        return fallback


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def setup_logging(log_path: str) -> None:
    LOGGER.setLevel(logging.DEBUG)
    handler = logging.FileHandler(log_path, encoding="utf-8")
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    handler.setFormatter(formatter)
    LOGGER.addHandler(handler)
    LOGGER.propagate = False


def log_unhandled_exception(exc_type, exc, tb) -> None:
    LOGGER.error("Unhandled exception", exc_info=(exc_type, exc, tb))


def load_settings(path: str) -> UiSettings:
    settings = QSettings(path, QSettings.IniFormat)
    ui = UiSettings()
    ui.refresh_minutes = clamp(
        read_int_setting(settings, "refresh/minutes", ui.refresh_minutes),
        REFRESH_MINUTES_MIN,
        REFRESH_MINUTES_MAX,
    )
    for key, attr in COLOR_KEYS:
        current = getattr(ui, attr)
        setattr(
            ui,
            attr,
            hex_to_qcolor(settings.value(key, qcolor_to_hex(current)), current),
        )
    ui.title_size = clamp(
        read_int_setting(settings, "fonts/title", ui.title_size), 8, 24
    )
    ui.value_size = clamp(
        read_int_setting(settings, "fonts/value", ui.value_size), 16, 72
    )
    ui.always_on_top = parse_bool(
        settings.value("window/always_on_top", ui.always_on_top),
        ui.always_on_top,
    )
    return ui


def save_settings(path: str, ui: UiSettings) -> None:
    settings = QSettings(path, QSettings.IniFormat)
    settings.setValue("refresh/minutes", ui.refresh_minutes)
    for key, attr in COLOR_KEYS:
        settings.setValue(key, qcolor_to_hex(getattr(ui, attr)))
    settings.setValue("fonts/title", ui.title_size)
    settings.setValue("fonts/value", ui.value_size)
    settings.setValue("window/always_on_top", int(ui.always_on_top))
    settings.sync()


def build_palette(ui: UiSettings) -> QPalette:
    palette = QPalette()
    palette.setColor(QPalette.Window, ui.bg_color)
    palette.setColor(QPalette.Base, ui.bg_color)
    palette.setColor(QPalette.Button, ui.button_color)
    palette.setColor(QPalette.WindowText, ui.fg_color)
    palette.setColor(QPalette.Text, ui.fg_color)
    palette.setColor(QPalette.ButtonText, ui.fg_color)
    palette.setColor(QPalette.Highlight, ui.accent_color)
    return palette


def load_app_icon(path: str = ICON_PATH) -> Optional[QIcon]:
    if not os.path.exists(path):
        LOGGER.debug("No icon at %s", path)
        return None
    icon = QIcon(path)
    if icon.isNull():
        LOGGER.warning("Could not load icon from %s", path)
        return None
    return icon


class SettingsDialog(QDialog):
    def __init__(self, parent: QWidget, ui_settings: UiSettings) -> None:
        super().__init__(parent)
        self.setWindowTitle("Settings")
        self.setModal(True)
        self._settings = replace(ui_settings)

        self.refresh_spin = QSpinBox()
        self.refresh_spin.setRange(REFRESH_MINUTES_MIN, REFRESH_MINUTES_MAX)
        self.refresh_spin.setSuffix(" min")
        self.refresh_spin.setValue(ui_settings.refresh_minutes)

        self.title_spin = QSpinBox()
        self.title_spin.setRange(8, 24)
        self.title_spin.setValue(ui_settings.title_size)

        self.value_spin = QSpinBox()
        self.value_spin.setRange(16, 72)
        self.value_spin.setValue(ui_settings.value_size)

        self._color_btns: dict[str, QPushButton] = {}
        colors_form = QFormLayout()
        for label, attr in (
            ("Background", "bg_color"),
            ("Text", "fg_color"),
            ("Accent", "accent_color"),
            ("Card", "card_color"),
            ("Card Text", "card_text_color"),
        ):
            btn = QPushButton()
            btn.clicked.connect(lambda _=False, a=attr: self._pick_color(a))
            self._color_btns[attr] = btn
            colors_form.addRow(label, btn)
        self._sync_color_btns()

        refresh_group = QGroupBox("Refresh")
        refresh_form = QFormLayout()
        refresh_form.addRow("Interval", self.refresh_spin)
        refresh_group.setLayout(refresh_form)

        typography_group = QGroupBox("Typography")
        typography_form = QFormLayout()
        typography_form.addRow("Card Title Size", self.title_spin)
        typography_form.addRow("Card Value Size", self.value_spin)
        typography_group.setLayout(typography_form)

        colors_group = QGroupBox("Colors")
        colors_group.setLayout(colors_form)

        buttons = QHBoxLayout()
        ok_btn = QPushButton("Save")
        cancel_btn = QPushButton("Cancel")
        ok_btn.clicked.connect(self.accept)
        cancel_btn.clicked.connect(self.reject)
        buttons.addStretch(1)
        buttons.addWidget(ok_btn)
        buttons.addWidget(cancel_btn)

        layout = QVBoxLayout()
        layout.addWidget(refresh_group)
        layout.addWidget(typography_group)
        layout.addWidget(colors_group)
        layout.addLayout(buttons)
        self.setLayout(layout)

    def _sync_color_btns(self) -> None:
        for attr, btn in self._color_btns.items():
            color = getattr(self._settings, attr)
            btn.setText(color.name())
            btn.setStyleSheet(
                f"background-color: {color.name()};"
                "color: #111; padding: 6px; border-radius: 6px;"
            )

    def _pick_color(self, attr: str) -> None:
        color = QColorDialog.getColor(getattr(self._settings, attr), self)
        if not color.isValid():
            return
        setattr(self._settings, attr, color)
        self._sync_color_btns()

    def updated_settings(self) -> UiSettings:
        return replace(
            self._settings,
            refresh_minutes=self.refresh_spin.value(),
            title_size=self.title_spin.value(),
            value_size=self.value_spin.value(),
        )


class CountdownCard(QFrame):
    def __init__(self, title: str, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)
        self.setObjectName("countdownCard")
        self.setMinimumSize(CARD_MIN_SIZE, CARD_MIN_SIZE)

        self.title_label = QLabel(title)
        self.title_label.setAlignment(Qt.AlignCenter)
        self.value_label = QLabel("0")
        self.value_label.setAlignment(Qt.AlignCenter)

        layout = QVBoxLayout()
        layout.setContentsMargins(4, 4, 4, 4)
        layout.setSpacing(0)
        layout.addStretch(1)
        layout.addWidget(self.title_label)
        layout.addWidget(self.value_label)
        layout.addStretch(1)
        self.setLayout(layout)

    def set_value(self, value: int) -> None:
        self.value_label.setText(str(value))

    def apply_style(self, ui: UiSettings, font_family: str) -> None:
        title_font = QFont(font_family, ui.title_size)
        title_font.setBold(True)
        self.title_label.setFont(title_font)
        value_font = QFont(font_family, ui.value_size)
        value_font.setBold(True)
        self.value_label.setFont(value_font)
        text = qcolor_to_hex(ui.card_text_color)
        self.setStyleSheet(
            "QFrame#countdownCard {"
            f"background-color: {qcolor_to_hex(ui.card_color)};"
            f"border-radius: {CARD_RADIUS}px;"
            "}"
            f"QLabel {{ color: {text}; background: transparent; }}"
        )


class CountdownWindow(QMainWindow):
    # Emitted from the refresh thread; Qt queues it onto the GUI thread.
    snapshot_ready = Signal(object)

    def __init__(
        self,
        settings_path: str = SETTINGS_PATH,
        scheduler: Optional[RefreshScheduler] = None,
    ) -> None:
        super().__init__()
        self.setWindowTitle(WINDOW_TITLE)
        self.resize(WINDOW_WIDTH, WINDOW_HEIGHT)
        self.setContextMenuPolicy(Qt.CustomContextMenu)
        self.customContextMenuRequested.connect(self._show_context_menu)

        self._settings_path = settings_path
        self.settings = load_settings(settings_path)
        self.scheduler = scheduler if scheduler is not None else RefreshScheduler()
        self.snapshot: Optional[CountdownSnapshot] = None
        self._font_family = default_font_family()
        self._always_on_top = self.settings.always_on_top

        icon = load_app_icon()
        if icon is not None:
            self.setWindowIcon(icon)

        self.snapshot_ready.connect(self._show_snapshot)

        self._build_ui()
        self._window_save_timer = QTimer(self)
        self._window_save_timer.setSingleShot(True)
        self._window_save_timer.setInterval(250)
        self._window_save_timer.timeout.connect(self._save_window_geometry)
        if not self._restore_window_geometry():
            self._center_on_screen()
        self._apply_settings()
        if self._always_on_top:
            self._toggle_always_on_top(True, save=False)

    def _build_ui(self) -> None:
        self.central = QWidget()
        self.setCentralWidget(self.central)

        self.cards: dict[str, CountdownCard] = {}
        grid = QGridLayout()
        grid.setContentsMargins(10, 10, 10, 10)
        grid.setSpacing(10)
        for column, title in enumerate(("Months", "Weeks", "Days", "Hours")):
            card = CountdownCard(title)
            self.cards[title] = card
            grid.addWidget(card, 0, column)
        self.central.setLayout(grid)

    def start_refresh(self) -> None:
        interval = timedelta(minutes=self.settings.refresh_minutes)
        self.scheduler.start(interval, self.snapshot_ready.emit)

    def stop_refresh(self) -> None:
        self.scheduler.stop()

    def _show_snapshot(self, snapshot: CountdownSnapshot) -> None:
        self.snapshot = snapshot
        for title, value in snapshot.cards():
            self.cards[title].set_value(value)
        LOGGER.debug("Countdown refreshed: %s", snapshot)

    def _refresh_now(self) -> None:
        self._show_snapshot(self.scheduler.compute())

    def _show_context_menu(self, pos) -> None:
        menu = self._build_context_menu()
        menu.exec(self.mapToGlobal(pos))

    def _build_context_menu(self) -> QMenu:
        menu = QMenu(self)
        refresh = QAction("Refresh Now", self)
        always_on_top = QAction("Always On Top", self)
        always_on_top.setCheckable(True)
        always_on_top.setChecked(self._always_on_top)
        settings = QAction("Settings", self)
        quit_action = QAction("Quit", self)
        refresh.triggered.connect(self._refresh_now)
        always_on_top.toggled.connect(self._toggle_always_on_top)
        settings.triggered.connect(self._open_settings)
        quit_action.triggered.connect(self.close)
        menu.addAction(refresh)
        menu.addAction(always_on_top)
        menu.addAction(settings)
        menu.addSeparator()
        menu.addAction(quit_action)
        return menu

    def _open_settings(self) -> None:
        dialog = SettingsDialog(self, self.settings)
        if dialog.exec() != QDialog.Accepted:
            return
        self._update_settings(dialog.updated_settings())

    def _update_settings(self, ui: UiSettings) -> None:
        interval_changed = ui.refresh_minutes != self.settings.refresh_minutes
        self.settings = ui
        self._apply_settings()
        save_settings(self._settings_path, self.settings)
        if interval_changed and self.scheduler.running:
            LOGGER.debug("Refresh interval changed to %d min", ui.refresh_minutes)
            self.stop_refresh()
            self.start_refresh()

    def _apply_settings(self) -> None:
        palette = build_palette(self.settings)
        app = QApplication.instance()
        if app is not None:
            app.setPalette(palette)
        self.setPalette(palette)
        self.central.setStyleSheet(
            f"background-color: {qcolor_to_hex(self.settings.bg_color)};"
        )
        for card in self.cards.values():
            card.apply_style(self.settings, self._font_family)

    def _toggle_always_on_top(self, enabled: bool, save: bool = True) -> None:
        try:
            LOGGER.debug("Always on top toggled: %s", enabled)
            self._always_on_top = enabled
            self.settings.always_on_top = enabled
            flags = self.windowFlags()
            if enabled:
                flags |= Qt.WindowStaysOnTopHint
            else:
                flags &= ~Qt.WindowStaysOnTopHint
            was_visible = self.isVisible()
            self.setWindowFlags(flags)
            if save:
                save_settings(self._settings_path, self.settings)
            if was_visible:
                # Changing window flags hides the window.
                QTimer.singleShot(0, self.show)
        except Exception:
            LOGGER.exception("Failed to toggle always on top")

    def _center_on_screen(self) -> None:
        screen = QApplication.primaryScreen()
        if screen is None:
            return
        frame = self.frameGeometry()
        frame.moveCenter(screen.availableGeometry().center())
        self.move(frame.topLeft())

    def _restore_window_geometry(self) -> bool:
        settings = QSettings(self._settings_path, QSettings.IniFormat)
        width = read_int_setting(settings, "window/width", None)
        height = read_int_setting(settings, "window/height", None)
        if width is not None and height is not None:
            width = max(width, self.minimumWidth())
            height = max(height, self.minimumHeight())
            self.resize(width, height)
        pos_x = read_int_setting(settings, "window/x", None)
        pos_y = read_int_setting(settings, "window/y", None)
        if pos_x is None or pos_y is None:
            return False
        self.move(pos_x, pos_y)
        return True

    def _save_window_geometry(self) -> None:
        settings = QSettings(self._settings_path, QSettings.IniFormat)
        rect = self.geometry()
        settings.setValue("window/x", rect.x())
        settings.setValue("window/y", rect.y())
        settings.setValue("window/width", rect.width())
        settings.setValue("window/height", rect.height())
        settings.sync()

    def _schedule_window_save(self) -> None:
        if getattr(self, "_window_save_timer", None) is None:
            return
        self._window_save_timer.start()

    def changeEvent(self, event) -> None:
        super().changeEvent(event)
        if (
            event.type() == QEvent.WindowStateChange
            and self._always_on_top
            and self.isMinimized()
        ):
            LOGGER.debug("Window minimized while always on top; restoring.")
            self.setWindowState(self.windowState() & ~Qt.WindowMinimized)
            self.showNormal()
            self.raise_()
            self.activateWindow()

    def showEvent(self, event) -> None:
        super().showEvent(event)
        if not self.scheduler.running:
            self.start_refresh()

    def resizeEvent(self, event) -> None:
        super().resizeEvent(event)
        self._schedule_window_save()

    def moveEvent(self, event) -> None:
        super().moveEvent(event)
        self._schedule_window_save()

    def closeEvent(self, event) -> None:
        self.stop_refresh()
        self._save_window_geometry()
        super().closeEvent(event)


def main() -> None:
    setup_logging(LOG_PATH)
    sys.excepthook = log_unhandled_exception
    app = QApplication(sys.argv)
    app.setQuitOnLastWindowClosed(True)
    app.setStyle("Fusion")
    icon = load_app_icon()
    if icon is not None:
        app.setWindowIcon(icon)
    window = CountdownWindow()
    window.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
