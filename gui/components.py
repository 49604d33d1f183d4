# Copyright (c) 2026 Stephen P Smith
# MIT License

import os
import logging

from PySide6.QtWidgets import (
    QDialog, QVBoxLayout, QHBoxLayout, QTableWidget, QTableWidgetItem,
    QTabWidget, QHeaderView, QPushButton, QLabel, QGridLayout, QWidget,
    QScrollArea, QSpinBox, QFrame, QApplication, QComboBox, QDialogButtonBox,
    QTextEdit, QCheckBox, QFormLayout
)
from PySide6.QtCore import Qt, QTimer, QSettings
from PySide6.QtGui import QPalette, QTextCursor

from cab_backend.handler import CABImage
from cab_backend.layout import DEFAULT_BLOCK_SIZE, DEFAULT_DIRECTORY_CAPACITY, BOOT_RECORD_SIZE
from cab_backend.cab_utils import parse_raw_entry, format_file_type, format_size, ceil_div

from gui.styles import block_color, BLOCK_LABELS

logger = logging.getLogger(__name__)


def _is_dark_theme() -> bool:
    palette = QApplication.instance().palette()
    return palette.color(QPalette.ColorRole.Window).lightness() < 128


def _field_table(rows) -> QTableWidget:
    """Two-column read-only Field/Value table"""
    table = QTableWidget()
    table.setColumnCount(2)
    table.setHorizontalHeaderLabels(['Field', 'Value'])
    table.horizontalHeader().setStretchLastSection(True)
    table.setEditTriggers(QTableWidget.EditTrigger.NoEditTriggers)
    table.setAlternatingRowColors(True)

    table.setRowCount(len(rows))
    for i, (field, value) in enumerate(rows):
        table.setItem(i, 0, QTableWidgetItem(field))
        table.setItem(i, 1, QTableWidgetItem(value))
    table.resizeColumnsToContents()
    return table


def _close_button_row(dialog) -> QHBoxLayout:
    button_layout = QHBoxLayout()
    button_layout.addStretch()
    close_btn = QPushButton("Close")
    close_btn.setFixedWidth(100)
    close_btn.clicked.connect(dialog.accept)
    button_layout.addWidget(close_btn)
    return button_layout


class BootRecordViewer(QDialog):
    """Dialog to view boot record fields and the derived layout"""

    def __init__(self, image: CABImage, parent=None):
        super().__init__(parent)
        self.image = image
        logger.debug("Opening Boot Record Viewer")
        self.setup_ui()

    def setup_ui(self):
        """Setup the viewer UI"""
        self.setWindowTitle("Boot Record Information")
        boot_record = self.image.boot_record

        layout = QVBoxLayout(self)
        tabs = QTabWidget()

        # Fields as stored on disk
        record_data = [
            ('Block Size (+0)', f'{boot_record.block_size} bytes'),
            ('Total Blocks (+4)', str(boot_record.total_blocks)),
            ('Bitmap Blocks (+8)', str(boot_record.bitmap_blocks)),
            ('Directory Capacity (+12)', f'{boot_record.directory_capacity} entries'),
        ]
        tabs.addTab(_field_table(record_data), "Boot Record")

        total_bytes = self.image.get_total_capacity()
        free_bytes = self.image.get_free_space()
        layout_data = [
            ('Boot Record', f'offset 0, {BOOT_RECORD_SIZE} bytes'),
            ('Bitmap Start Offset', f'{boot_record.bitmap_offset:,} bytes'),
            ('Bitmap Size', f'{boot_record.bitmap_bytes:,} bytes ({boot_record.addressable_bits:,} bits)'),
            ('Root Directory Start', f'{boot_record.directory_offset:,} bytes (block {boot_record.directory_first_block})'),
            ('Root Directory Size', f'{boot_record.directory_bytes:,} bytes ({boot_record.directory_blocks} blocks)'),
            ('First Data Block', str(boot_record.data_first_block)),
            ('Unreachable Bits', str(boot_record.addressable_bits - boot_record.total_blocks)),
            ('Total Capacity', f'{total_bytes:,} bytes ({format_size(total_bytes)})'),
            ('Free Space', f'{free_bytes:,} bytes ({format_size(free_bytes)})'),
            ('Largest Free Run', f'{self.image.get_largest_free_run()} blocks'),
        ]
        tabs.addTab(_field_table(layout_data), "Image Layout")

        layout.addWidget(tabs)
        layout.addLayout(_close_button_row(self))

        self.adjustSize()
        self.setMinimumSize(420, 400)


class DirectoryViewer(QDialog):
    """Dialog to view every root directory slot with its raw bytes"""

    def __init__(self, image: CABImage, parent=None):
        super().__init__(parent)
        self.image = image
        self.raw_entries = []
        self.show_free = False
        logger.debug("Opening Directory Viewer")
        self.setup_ui()

    def format_raw_entry_tooltip(self, index: int) -> str:
        """Tooltip showing the 32-byte layout of one slot"""
        if index >= len(self.raw_entries):
            return "<html><body>Invalid entry index</body></html>"

        entry_idx, entry_data = self.raw_entries[index]
        info = parse_raw_entry(entry_data)

        html = "<html><head><style>"
        html += "table { border-collapse: collapse; font-family: monospace; font-size: 11px; }"
        html += "th, td { border: 1px solid #666; padding: 3px 6px; text-align: left; }"
        html += "th { background-color: #444; color: white; font-weight: bold; }"
        html += "</style></head><body>"
        html += f"<b>Entry #{entry_idx}</b>"
        html += "<table>"
        html += "<tr><th>First Block (+0)</th><th>Size (+4)</th><th>Type (+8)</th><th>Name (+9)</th></tr>"
        html += "<tr>"
        html += f"<td>{info['first_block']}</td>"
        html += f"<td>{info['size_bytes']:,}</td>"
        html += f"<td>0x{info['file_type']:02X}<br>{info['file_type_str']}</td>"
        html += f"<td>'{info['name']}'<br>{info['name_hex']}</td>"
        html += "</tr></table>"
        html += f"<pre>{' '.join(f'{b:02X}' for b in entry_data)}</pre>"
        html += "</body></html>"
        return html

    def setup_ui(self):
        """Setup the viewer UI"""
        self.setWindowTitle("Root Directory Information")

        layout = QVBoxLayout(self)

        self.raw_entries = self.image.read_raw_directory_entries()
        used = sum(1 for _, data in self.raw_entries if not parse_raw_entry(data)['is_free'])

        info_label = QLabel(
            f"Occupied entries: {used} of {self.image.directory_capacity} | Each entry is 32 bytes | "
            f"Hover over any row to see the raw entry"
        )
        info_label.setStyleSheet("QLabel { font-weight: bold; padding: 5px; }")
        layout.addWidget(info_label)

        self.show_free_cb = QCheckBox("Show free slots")
        self.show_free_cb.toggled.connect(self.on_show_free_toggled)
        layout.addWidget(self.show_free_cb)

        self.table = QTableWidget()
        self.table.setColumnCount(6)
        self.table.setHorizontalHeaderLabels(['Index', 'Name', 'Type', 'Size (bytes)', 'First Block', 'Blocks'])
        self.table.setEditTriggers(QTableWidget.EditTrigger.NoEditTriggers)
        self.table.setAlternatingRowColors(True)
        layout.addWidget(self.table)

        self.populate_table()

        layout.addLayout(_close_button_row(self))
        self.adjustSize()
        self.setMinimumSize(700, 450)

    def on_show_free_toggled(self, checked):
        self.show_free = checked
        self.populate_table()

    def populate_table(self):
        rows = []
        for index, data in self.raw_entries:
            info = parse_raw_entry(data)
            if info['is_free'] and not self.show_free:
                continue
            rows.append((index, info))

        self.table.setSortingEnabled(False)
        self.table.setRowCount(len(rows))
        for row, (index, info) in enumerate(rows):
            blocks = ceil_div(info["size_bytes"], self.image.block_size)
            values = [
                str(index),
                info['name'],
                format_file_type(info['file_type']),
                f"{info['size_bytes']:,}",
                str(info['first_block']),
                str(blocks),
            ]
            tooltip = self.format_raw_entry_tooltip(index)
            for col, value in enumerate(values):
                item = QTableWidgetItem(value)
                item.setToolTip(tooltip)
                self.table.setItem(row, col, item)
        self.table.setSortingEnabled(True)

        header = self.table.horizontalHeader()
        for col in range(self.table.columnCount()):
            header.setSectionResizeMode(col, QHeaderView.ResizeMode.ResizeToContents)


class BitmapViewer(QDialog):
    """Dialog to view the allocation bitmap as a grid"""

    def __init__(self, image: CABImage, parent=None):
        super().__init__(parent)
        self.image = image
        self.bitmap = None
        self.selected_blocks = set()
        self.block_widgets = {}
        self.block_to_file = {}

        self.settings = QSettings('CABManager', 'Settings')
        logger.debug("Opening Bitmap Viewer")

        self.setup_ui()

    def setup_ui(self):
        """Setup the viewer UI"""
        self.setWindowTitle("Allocation Bitmap Viewer")
        self.setGeometry(100, 100, 1200, 700)

        layout = QVBoxLayout(self)

        self.bitmap = self.image.read_bitmap()
        self.block_to_file = self.image.get_block_map()
        boot_record = self.image.boot_record

        info_text = (
            f"<b>Bitmap Size:</b> {boot_record.bitmap_bytes:,} bytes ({boot_record.bitmap_blocks} blocks) | "
            f"<b>Total Blocks:</b> {boot_record.total_blocks} | "
            f"<b>Addressable Bits:</b> {self.bitmap.addressable_bits} | "
            f"<b>Free Blocks:</b> {self.bitmap.count_free()}"
        )
        info_label = QLabel(info_text)
        info_label.setWordWrap(True)
        layout.addWidget(info_label)

        self.legend_frame = QFrame()
        self.legend_frame.setFrameStyle(QFrame.Shape.StyledPanel)
        legend_layout = QHBoxLayout(self.legend_frame)
        legend_layout.addWidget(QLabel("<b>Legend:</b>"))
        is_dark = _is_dark_theme()
        for status, text in BLOCK_LABELS.items():
            color_box = QLabel()
            color_box.setFixedSize(20, 20)
            color_box.setStyleSheet(f"background-color: {block_color(status, is_dark).name()}; border: 1px solid #666;")
            legend_layout.addWidget(color_box)
            legend_layout.addWidget(QLabel(text))
        legend_layout.addStretch()
        layout.addWidget(self.legend_frame)

        controls_layout = QHBoxLayout()
        controls_layout.addWidget(QLabel("Blocks per row:"))

        self.blocks_per_row_spinbox = QSpinBox()
        self.blocks_per_row_spinbox.setRange(8, 128)
        self.blocks_per_row_spinbox.setSingleStep(8)
        self.blocks_per_row_spinbox.setValue(self.settings.value('blocks_per_row', 32, type=int))
        self.blocks_per_row_spinbox.valueChanged.connect(self.on_blocks_per_row_changed)
        controls_layout.addWidget(self.blocks_per_row_spinbox)

        clear_btn = QPushButton("Clear Selection")
        clear_btn.clicked.connect(self.clear_selection)
        controls_layout.addWidget(clear_btn)
        controls_layout.addStretch()
        layout.addLayout(controls_layout)

        self.scroll = QScrollArea()
        self.scroll.setWidgetResizable(True)
        self.grid_container = QWidget()
        self.scroll.setWidget(self.grid_container)
        layout.addWidget(self.scroll)

        self.rebuild_grid()

        layout.addLayout(_close_button_row(self))

    def on_blocks_per_row_changed(self):
        self.settings.setValue('blocks_per_row', self.blocks_per_row_spinbox.value())
        self.rebuild_grid()

    def clear_selection(self):
        self.selected_blocks.clear()
        self.update_block_colors()

    def block_clicked(self, block: int):
        """Select every block of the file owning this block (or deselect it)"""
        name = self.block_to_file.get(block)
        if name is None:
            return

        blocks = {b for b, owner in self.block_to_file.items() if owner == name}
        if blocks == self.selected_blocks:
            self.selected_blocks.clear()
        else:
            self.selected_blocks = blocks
        self.update_block_colors()

    def update_block_colors(self):
        is_dark = _is_dark_theme()
        for block, cell in self.block_widgets.items():
            status = self.image.classify_block(self.bitmap, block)
            color = block_color(status, is_dark, selected=block in self.selected_blocks)
            text_color = "white" if is_dark else "black"
            cell.setStyleSheet(
                f"background-color: {color.name()}; "
                f"color: {text_color}; "
                f"border: 1px solid #666; "
                f"font-size: 9px;"
            )

    def rebuild_grid(self):
        """Rebuild the block grid with current settings"""
        blocks_per_row = self.blocks_per_row_spinbox.value()

        old_layout = self.grid_container.layout()
        if old_layout:
            while old_layout.count():
                item = old_layout.takeAt(0)
                if item.widget():
                    item.widget().deleteLater()
            QWidget().setLayout(old_layout)

        self.block_widgets.clear()

        grid_layout = QGridLayout(self.grid_container)
        grid_layout.setSpacing(2)

        for col in range(blocks_per_row):
            header_label = QLabel(f"<b>{col}</b>")
            header_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
            header_label.setStyleSheet("font-size: 9px;")
            grid_layout.addWidget(header_label, 0, col + 1)

        total_bits = self.bitmap.addressable_bits
        num_rows = (total_bits + blocks_per_row - 1) // blocks_per_row

        for row in range(num_rows):
            header_label = QLabel(f"<b>{row * blocks_per_row}</b>")
            header_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
            header_label.setStyleSheet("font-size: 9px;")
            grid_layout.addWidget(header_label, row + 1, 0)

            for col in range(blocks_per_row):
                block = row * blocks_per_row + col
                if block >= total_bits:
                    break

                status = self.image.classify_block(self.bitmap, block)
                tooltip = f"Block {block}: {BLOCK_LABELS[status]} (bit = {self.bitmap.get_bit(block)})"
                if block in self.block_to_file:
                    tooltip += f"\nName: {self.block_to_file[block]}"
                elif status == CABImage.BLOCK_USED:
                    tooltip += "\nStatus: Orphaned (not referenced by any directory entry)"

                cell = QLabel()
                cell.setFixedSize(18, 18)
                cell.setFrameStyle(QFrame.Shape.Box)
                cell.setToolTip(tooltip)
                cell.mousePressEvent = lambda event, b=block: self.block_clicked(b)
                if block in self.block_to_file:
                    cell.setCursor(Qt.CursorShape.PointingHandCursor)

                self.block_widgets[block] = cell
                grid_layout.addWidget(cell, row + 1, col + 1)

        self.update_block_colors()

        grid_layout.setRowStretch(num_rows + 1, 1)
        grid_layout.setColumnStretch(blocks_per_row + 1, 1)


class NewImageDialog(QDialog):
    """Dialog for creating a new image from a preset"""
    def __init__(self, parent=None):
        super().__init__(parent)
        self.setWindowTitle("Create New Image")
        self.format_keys = list(CABImage.FORMATS)
        self.selected_format = self.format_keys[0]
        self.setup_ui()

    def setup_ui(self):
        layout = QVBoxLayout(self)

        layout.addWidget(QLabel("Select Image Format:"))
        self.format_combo = QComboBox()
        self.format_combo.addItems([CABImage.FORMATS[key]['name'] for key in self.format_keys])
        layout.addWidget(self.format_combo)
        layout.addSpacing(10)

        btns = QDialogButtonBox(QDialogButtonBox.StandardButton.Ok | QDialogButtonBox.StandardButton.Cancel)
        btns.accepted.connect(self.accept)
        btns.rejected.connect(self.reject)
        layout.addWidget(btns)

    def accept(self):
        self.selected_format = self.format_keys[self.format_combo.currentIndex()]
        super().accept()


class FormatDialog(QDialog):
    """Dialog for choosing the geometry used to (re)format an image"""
    def __init__(self, block_size: int = DEFAULT_BLOCK_SIZE,
                 directory_capacity: int = DEFAULT_DIRECTORY_CAPACITY, parent=None):
        super().__init__(parent)
        self.setWindowTitle("Format Image")
        self.block_size = block_size
        self.directory_capacity = directory_capacity
        self.setup_ui()

    def setup_ui(self):
        layout = QVBoxLayout(self)

        warning = QLabel("Formatting removes every file from the root directory.\n"
                         "File data stays on disk until overwritten.")
        layout.addWidget(warning)

        form = QFormLayout()
        self.block_size_combo = QComboBox()
        for size in (512, 1024, 2048, 4096):
            self.block_size_combo.addItem(f"{size} bytes", size)
        self.block_size_combo.setCurrentIndex(max(0, self.block_size_combo.findData(self.block_size)))
        form.addRow("Block size:", self.block_size_combo)

        self.capacity_spinbox = QSpinBox()
        self.capacity_spinbox.setRange(16, 65536)
        self.capacity_spinbox.setSingleStep(16)
        self.capacity_spinbox.setValue(self.directory_capacity)
        form.addRow("Directory entries:", self.capacity_spinbox)
        layout.addLayout(form)

        btns = QDialogButtonBox(QDialogButtonBox.StandardButton.Ok | QDialogButtonBox.StandardButton.Cancel)
        btns.accepted.connect(self.accept)
        btns.rejected.connect(self.reject)
        layout.addWidget(btns)

    def accept(self):
        self.block_size = self.block_size_combo.currentData()
        self.directory_capacity = self.capacity_spinbox.value()
        super().accept()


class LogViewer(QDialog):
    """Dialog to view application log"""
    def __init__(self, log_path, parent=None):
        super().__init__(parent)
        self.log_path = log_path
        self.setWindowTitle("Application Log")
        self.resize(800, 600)

        self.settings = QSettings('CABManager', 'Settings')
        self._last_mtime = 0
        self._last_size = 0

        layout = QVBoxLayout(self)

        self.text_edit = QTextEdit()
        self.text_edit.setReadOnly(True)
        word_wrap = self.settings.value('log_word_wrap', False, type=bool)
        self.set_word_wrap(word_wrap)

        font = self.text_edit.font()
        font.setFamily("Consolas")
        font.setStyleHint(font.StyleHint.Monospace)
        self.text_edit.setFont(font)
        layout.addWidget(self.text_edit)

        self.load_log(self.log_path)

        # Poll the file for new records
        self.timer = QTimer(self)
        self.timer.timeout.connect(self.check_update)
        self.timer.start(1000)

        btn_layout = QHBoxLayout()
        self.wrap_cb = QCheckBox("Word Wrap")
        self.wrap_cb.setChecked(word_wrap)
        self.wrap_cb.toggled.connect(self.on_word_wrap_toggled)
        btn_layout.addWidget(self.wrap_cb)
        btn_layout.addStretch()

        close_btn = QPushButton("Close")
        close_btn.clicked.connect(self.accept)
        btn_layout.addWidget(close_btn)
        layout.addLayout(btn_layout)

    def check_update(self):
        if not os.path.exists(self.log_path):
            return
        stat = os.stat(self.log_path)
        if stat.st_mtime != self._last_mtime or stat.st_size != self._last_size:
            self.load_log(self.log_path)

    def set_word_wrap(self, enabled):
        if enabled:
            self.text_edit.setLineWrapMode(QTextEdit.LineWrapMode.WidgetWidth)
        else:
            self.text_edit.setLineWrapMode(QTextEdit.LineWrapMode.NoWrap)

    def on_word_wrap_toggled(self, checked):
        self.set_word_wrap(checked)
        self.settings.setValue('log_word_wrap', checked)

    def load_log(self, path):
        if not os.path.exists(path):
            self.text_edit.setText("Log file not found.")
            return

        stat = os.stat(path)
        self._last_mtime = stat.st_mtime
        self._last_size = stat.st_size

        with open(path, 'r', encoding='utf-8', errors='replace') as f:
            lines = f.readlines()

        is_dark = _is_dark_theme()
        level_colors = {
            " - CRITICAL - ": ("#b71c1c", "#ff5252"),
            " - ERROR - ": ("#d32f2f", "#ff6b6b"),
            " - WARNING - ": ("#e65100", "#ffb74d"),
            " - INFO - ": ("#2e7d32", "#81c784"),
            " - DEBUG - ": ("#757575", "#9e9e9e"),
        }

        html_parts = ['<html><body style="font-family: Consolas, monospace; font-size: 10pt;">']
        for line in lines:
            line = line.rstrip()
            if not line:
                continue

            color = "#ffffff" if is_dark else "#000000"
            for marker, (light, dark) in level_colors.items():
                if marker in line:
                    color = dark if is_dark else light
                    break
            weight = "bold" if " - CRITICAL - " in line else "normal"

            safe_line = line.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
            html_parts.append(f'<span style="color:{color}; font-weight:{weight};">{safe_line}</span><br>')

        html_parts.append('</body></html>')
        self.text_edit.setHtml("".join(html_parts))
        self.text_edit.moveCursor(QTextCursor.MoveOperation.End)
