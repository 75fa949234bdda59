import sys
import logging
from pathlib import Path

from PyQt5.QtWidgets import (QApplication, QWidget, QLabel, QVBoxLayout,
                              QHBoxLayout, QFrame, QGraphicsDropShadowEffect, QToolTip)
from PyQt5.QtCore import Qt, QTimer
from PyQt5.QtGui import QColor, QCursor, QFont, QFontMetrics, QPixmap

from content_fit import format_change
from heatmap_config import (PROFILE_LOGO_TEXT, load_config, options_from_config,
                            scheduler_settings)
from render_scheduler import RenderScheduler
from tile_model import TIMEFRAME_1D, load_tiles

logger = logging.getLogger(__name__)

# ~60 fps animation tick
FRAME_MS = 16
# symbol font size at scale 1.0
BASE_FONT_PX = 14
MAX_FONT_PX = 36


def get_color(change):
    """Gradient proportional to the percent change; None and 0 are neutral grey."""
    if change is None or change == 0: return "#2c2c34"

    base_gray = (44, 44, 52)    # #2c2c34
    green_max = (46, 125, 50)   # #2e7d32
    red_max = (211, 47, 47)     # #d32f2f

    # saturate at +-4%
    intensity = min(abs(change) / 4.0, 1.0)
    # non-linear, never below 25%
    intensity = 0.25 + (intensity ** 0.6) * 0.75

    target = green_max if change > 0 else red_max
    r = int(base_gray[0] + (target[0] - base_gray[0]) * intensity)
    g = int(base_gray[1] + (target[1] - base_gray[1]) * intensity)
    b = int(base_gray[2] + (target[2] - base_gray[2]) * intensity)

    return f"#{r:02x}{g:02x}{b:02x}"


class QtContentSizer:
    """Measures the unscaled symbol + change (+ logo) box with font metrics."""
    LOGO_PX = 18
    PADDING = 6

    def __init__(self, font=None):
        self.font = QFont(font) if font is not None else QFont("Segoe UI", 10)

    def __call__(self, kind):
        ticker_font = QFont(self.font)
        ticker_font.setPixelSize(BASE_FONT_PX)
        ticker_font.setBold(True)
        change_font = QFont(self.font)
        change_font.setPixelSize(max(2, int(BASE_FONT_PX * 0.8)))

        ticker_metrics = QFontMetrics(ticker_font)
        change_metrics = QFontMetrics(change_font)
        w = max(ticker_metrics.horizontalAdvance("WWWW"), change_metrics.horizontalAdvance("+00.00%"))
        h = ticker_metrics.height() + change_metrics.height()
        if kind == PROFILE_LOGO_TEXT:
            w = max(w, self.LOGO_PX)
            h += self.LOGO_PX
        return w + 2 * self.PADDING, h + 2 * self.PADDING


def qt_scheduler(settings=None, sizer=None):
    return RenderScheduler.from_settings(
        settings, schedule=lambda callback: QTimer.singleShot(FRAME_MS, callback), sizer=sizer)


class StockCell(QFrame):
    def __init__(self, symbol, parent=None):
        super().__init__(parent)
        self.symbol = symbol
        self.cell = None
        self.setObjectName("StockCell")
        self.setMouseTracking(True)
        self.tooltip_timer = QTimer(self)
        self.tooltip_timer.setSingleShot(True)
        self.tooltip_timer.timeout.connect(self.show_custom_tooltip)
        self.setup_ui()

    def setup_ui(self):
        self.layout = QVBoxLayout(self)
        self.layout.setContentsMargins(0, 0, 0, 0)
        self.layout.setSpacing(0)
        self.layout.setAlignment(Qt.AlignCenter)

        self.logo_label = QLabel()
        self.logo_label.setAlignment(Qt.AlignCenter)
        self.ticker_label = QLabel(self.symbol)
        self.ticker_label.setAlignment(Qt.AlignCenter)
        self.change_label = QLabel("--")
        self.change_label.setAlignment(Qt.AlignCenter)

        for label in (self.logo_label, self.ticker_label, self.change_label):
            self.layout.addWidget(label)
            label.hide()
        self.add_shadow(self.ticker_label)
        self.add_shadow(self.change_label)

    def add_shadow(self, label):
        shadow = QGraphicsDropShadowEffect(self)
        shadow.setBlurRadius(2); shadow.setColor(QColor(0, 0, 0, 120)); shadow.setOffset(1, 1)
        label.setGraphicsEffect(shadow)

    def update_cell(self, cell):
        self.cell = cell
        self.current_color = get_color(cell.value)
        self.setStyleSheet(
            f"QFrame#StockCell {{ background-color: {self.current_color}; border: 1px solid rgba(0,0,0,0.25); border-radius: 2px; }}"
            " QFrame#StockCell:hover { border: 1.5px solid white; }")

        w, h = self.width(), self.height()
        font_size = max(2, min(BASE_FONT_PX * cell.scale, MAX_FONT_PX))

        if cell.show_logo:
            logo_px = max(8, int(QtContentSizer.LOGO_PX * cell.scale))
            if isinstance(cell.tile.content_ref, QPixmap):
                self.logo_label.setPixmap(cell.tile.content_ref.scaled(
                    logo_px, logo_px, Qt.KeepAspectRatio, Qt.SmoothTransformation))
            else:
                # no pixmap yet: initial as a placeholder mark
                self.logo_label.setText(self.symbol[:1])
                self.logo_label.setStyleSheet(f"color: rgba(255,255,255,0.7); font-size: {logo_px}px; font-weight: 800; background: transparent; border: none;")
            self.logo_label.show()
        else:
            self.logo_label.hide()

        if not cell.show_text:
            self.ticker_label.hide(); self.change_label.hide()
            return

        self.ticker_label.setText(self.symbol)
        self.ticker_label.setStyleSheet(f"color: white; font-weight: 800; font-size: {int(font_size)}px; background: transparent; border: none;")
        self.ticker_label.show()

        # change line only when there is room for a second row
        if h > font_size * 2.3 and w > font_size * 2.0:
            self.change_label.setText(cell.display)
            self.change_label.setStyleSheet(f"color: rgba(255,255,255,0.85); font-weight: 500; font-size: {max(2, int(font_size * 0.8))}px; background: transparent; border: none;")
            self.change_label.show()
        else:
            self.change_label.hide()

    def enterEvent(self, event):
        self.tooltip_timer.start(300)

    def leaveEvent(self, event):
        self.tooltip_timer.stop()
        QToolTip.hideText()

    def show_custom_tooltip(self):
        if self.cell is None: return
        value = self.cell.value
        name = self.cell.tile.label or self.symbol
        color = '#4caf50' if (value or 0) >= 0 else '#ef5350'
        text = f"<b>{name}</b> ({self.symbol})<br>Change: <span style='color:{color};'>{format_change(value)}</span>"
        QToolTip.showText(QCursor.pos(), text, self)


class TreemapWidget(QFrame):
    """Render surface: reports its size and resizes, places cells it is given."""

    def __init__(self, parent=None):
        super().__init__(parent)
        self.cells = {}  # (symbol, occurrence) -> StockCell
        self._resize_listeners = []
        self.setStyleSheet("QFrame { background: rgba(255,255,255,0.01); border: none; }")

    def surface_size(self):
        return self.width(), self.height()

    def add_resize_listener(self, callback):
        self._resize_listeners.append(callback)

    def measure_content(self, kind):
        return QtContentSizer(self.font())(kind)

    def _notify(self):
        for callback in list(self._resize_listeners):
            callback()

    def resizeEvent(self, event):
        super().resizeEvent(event)
        self._notify()

    def showEvent(self, event):
        super().showEvent(event)
        self._notify()

    def present(self, cells):
        w, h = self.width(), self.height()
        seen = set()
        occurrences = {}

        for cell in cells:
            r = cell.rect
            x, y, rw, rh = r.x * w, r.y * h, r.w * w, r.h * h

            # [SMART-ROUNDING] w = round(x+w) - round(x)
            ix, iy = round(x), round(y)
            iw = round(x + rw) - ix
            ih = round(y + rh) - iy

            # [HARD-SNAP] stick to the surface edges
            if ix + iw >= w - 1: iw = max(iw, w - ix)
            if iy + ih >= h - 1: ih = max(ih, h - iy)

            # a repeated symbol gets its own cell
            n = occurrences[cell.symbol] = occurrences.get(cell.symbol, -1) + 1
            key = (cell.symbol, n)
            widget = self.cells.get(key)
            if widget is None:
                widget = self.cells[key] = StockCell(cell.symbol, parent=self)
            seen.add(key)

            if iw <= 0 or ih <= 0:
                widget.hide()
                continue
            widget.setGeometry(ix, iy, iw, ih)
            widget.update_cell(cell)
            widget.show()

        for key in [k for k in self.cells if k not in seen]:
            widget = self.cells.pop(key)
            widget.setParent(None); widget.deleteLater()


class HeatmapWindow(QWidget):
    def __init__(self, scheduler, records_path, timeframe=TIMEFRAME_1D, options=None, history_path=None, parent=None):
        super().__init__(parent)
        self.scheduler = scheduler
        self.records_path = Path(records_path) if records_path else None
        self.history_path = Path(history_path) if history_path else None
        self.timeframe = timeframe
        self.options = options
        self.records = []
        self.setup_ui()

    def setup_ui(self):
        self.resize(1200, 850)
        self.setStyleSheet("background-color: rgba(15, 15, 20, 0.98);")
        layout = QVBoxLayout(self)
        layout.setContentsMargins(1, 1, 1, 1); layout.setSpacing(2)

        header = QHBoxLayout()
        header.setContentsMargins(8, 4, 8, 0)
        self.title_label = QLabel("Heatmap")
        self.title_label.setStyleSheet("color: rgba(255,255,255,0.9); font-size: 16px; font-weight: 800;")
        self.change_label = QLabel("--")
        header.addWidget(self.title_label)
        header.addWidget(self.change_label)
        header.addStretch()
        layout.addLayout(header)

        self.treemap = TreemapWidget(self)
        layout.addWidget(self.treemap, 1)

    def reload(self):
        if self.records_path is not None:
            self.records = load_tiles(self.records_path, self.history_path)
        self.scheduler.render(self.treemap, self.records, self.timeframe, self.options)
        self.update_header()

    def update_header(self):
        # average over the last drawn cells; empty until the first settled draw
        state = self.scheduler.state_for(self.treemap)
        values = [c.value for c in (state.last_cells if state else []) if c.value is not None]
        avg_change = sum(values) / len(values) if values else None
        c_color = "#4caf50" if (avg_change or 0) >= 0 else "#ef5350"
        self.change_label.setText(format_change(avg_change))
        self.change_label.setStyleSheet(f"color: {c_color}; font-size: 16px; margin-left: 12px; font-weight: 800;")


def main(argv=None):
    argv = list(sys.argv if argv is None else argv)
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(name)s: %(message)s")

    config = load_config()
    records_path = argv[1] if len(argv) > 1 else config.get("records")
    view = argv[2] if len(argv) > 2 else config.get("view", "sp500")
    timeframe = config.get("timeframe", TIMEFRAME_1D)

    app = QApplication(argv[:1])
    app.setFont(QFont("Segoe UI", 10))

    scheduler = qt_scheduler(scheduler_settings(config))
    window = HeatmapWindow(scheduler, records_path, timeframe, options_from_config(config, view),
                           history_path=config.get("history"))
    window.setWindowTitle(f"Heatmap - {view}")
    window.show()
    window.reload()

    refresh_ms = int(config.get("refresh_minutes", 10) * 60 * 1000)
    timer = QTimer(); timer.timeout.connect(window.reload)
    timer.start(refresh_ms)
    # header follows the settled draw a few frames later
    redraw_timer = QTimer(); redraw_timer.timeout.connect(window.update_header)
    redraw_timer.start(500)

    return app.exec_()


if __name__ == "__main__":
    sys.exit(main())
