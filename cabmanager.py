#!/usr/bin/env python3

# Copyright (c) 2026 Stephen P Smith
# MIT License

"""
CABManager
A GUI tool for managing files in CAB flat filesystem images
"""

import sys
import os
import logging
from pathlib import Path
from typing import Optional

from PySide6.QtWidgets import (
    QApplication, QMainWindow, QWidget, QVBoxLayout, QHBoxLayout,
    QTreeWidget, QTreeWidgetItem, QFileDialog, QMessageBox, QLabel,
    QStatusBar, QDialog, QToolBar, QStyle, QHeaderView, QLineEdit
)
from PySide6.QtCore import Qt, QSettings, QSize
from PySide6.QtGui import QAction, QKeySequence, QActionGroup

from cab_backend.handler import CABImage
from cab_backend.layout import CABFormat, DEFAULT_BLOCK_SIZE, DEFAULT_DIRECTORY_CAPACITY
from cab_backend.errors import CABError, CABCorruptionError, CABInvalidImageError
from cab_backend.cab_utils import format_file_type, format_size

from gui.components import (
    BootRecordViewer, DirectoryViewer, BitmapViewer, NewImageDialog,
    FormatDialog, LogViewer
)
from gui.styles import get_dark_palette, get_light_palette, toolbar_stylesheet
from gui.about import about_html

LOG_FILE = "cabmanager.log"


class SizeTreeWidgetItem(QTreeWidgetItem):
    """Tree item that sorts the size and block columns numerically"""

    def __lt__(self, other):
        column = self.treeWidget().sortColumn()
        mine = self.data(column, Qt.ItemDataRole.UserRole + 1)
        theirs = other.data(column, Qt.ItemDataRole.UserRole + 1)
        if mine is not None and theirs is not None:
            return mine < theirs
        return self.text(column).lower() < other.text(column).lower()


class CABManagerWindow(QMainWindow):
    """Main window for the CAB image manager"""

    def setup_logging(self):
        """Configure application-wide logging"""
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(filename)s:%(lineno)d - %(levelname)s - %(message)s',
            handlers=[
                logging.FileHandler(LOG_FILE, mode='w'),
                logging.StreamHandler()
            ]
        )
        self.logger = logging.getLogger("CABManager")

    def __init__(self, image_path: Optional[str] = None):
        super().__init__()

        self.settings = QSettings('CABManager', 'Settings')
        self.warn_duplicates = self.settings.value('warn_duplicates', True, type=bool)
        self.theme_mode = self.settings.value('theme_mode', 'light', type=str)

        self.setup_logging()
        self.logger.info("Application started")

        self.image_path = image_path
        self.image = None
        self.log_viewer = None

        self.setup_ui()

        geometry = self.settings.value('window_geometry')
        if geometry:
            self.restoreGeometry(geometry)

        self.apply_theme(self.theme_mode)

        if image_path:
            self.load_image(image_path)
        else:
            last_image = self.settings.value('last_image_path', '')
            if last_image and Path(last_image).exists():
                self.load_image(last_image)
            else:
                self.status_bar.showMessage("No image loaded. Create new or open existing image.")

    def setup_ui(self):
        """Create the user interface"""
        self.setWindowTitle("CABManager")
        self.setGeometry(400, 200, 640, 500)
        self.setWindowIcon(self.style().standardIcon(QStyle.StandardPixmap.SP_DriveHDIcon))
        self.setAcceptDrops(True)

        self.create_menus()
        self.create_toolbar()

        central_widget = QWidget()
        self.setCentralWidget(central_widget)
        layout = QVBoxLayout(central_widget)

        search_layout = QHBoxLayout()
        search_layout.addWidget(QLabel("Filter:"))
        self.search_input = QLineEdit()
        self.search_input.setPlaceholderText("Search by filename...")
        self.search_input.setClearButtonEnabled(True)
        self.search_input.textChanged.connect(self.refresh_file_list)
        search_layout.addWidget(self.search_input)
        layout.addLayout(search_layout)

        self.table = QTreeWidget()
        self.table.setColumnCount(5)
        self.table.setHeaderLabels(['Filename', 'Type', 'Size', 'First Block', 'Blocks'])
        self.table.setRootIsDecorated(False)
        self.table.setAlternatingRowColors(True)
        self.table.setSortingEnabled(True)
        self.table.setSelectionMode(QTreeWidget.SelectionMode.ExtendedSelection)
        self.table.itemDoubleClicked.connect(lambda item, column: self.extract_selected())

        header = self.table.header()
        header.setStretchLastSection(False)
        header.setSectionResizeMode(0, QHeaderView.ResizeMode.Stretch)
        for i in range(1, 5):
            header.setSectionResizeMode(i, QHeaderView.ResizeMode.ResizeToContents)
        self.table.header().setSortIndicator(0, Qt.SortOrder.AscendingOrder)

        layout.addWidget(self.table)

        self.status_bar = QStatusBar()
        self.setStatusBar(self.status_bar)
        self.info_label = QLabel()
        self.status_bar.addPermanentWidget(self.info_label)
        self.status_bar.showMessage("Ready | Tip: Drag and drop files to add them to the image")

    def create_toolbar(self):
        """Create the main toolbar"""
        toolbar = QToolBar("Main Toolbar")
        toolbar.setObjectName("MainToolbar")
        toolbar.setIconSize(QSize(24, 24))
        toolbar.setMovable(False)
        toolbar.setToolButtonStyle(Qt.ToolButtonStyle.ToolButtonTextUnderIcon)
        toolbar.setStyleSheet(toolbar_stylesheet)
        self.addToolBar(Qt.ToolBarArea.TopToolBarArea, toolbar)

        actions = [
            (QStyle.StandardPixmap.SP_FileIcon, "New", "Create a new blank image", self.create_new_image),
            (QStyle.StandardPixmap.SP_DirOpenIcon, "Open", "Open an existing image", self.open_image),
            (QStyle.StandardPixmap.SP_DriveHDIcon, "Format", "Format the image (erase the directory)", self.format_image),
            None,
            (QStyle.StandardPixmap.SP_DialogOpenButton, "Add", "Add files to the image", self.add_files),
            (QStyle.StandardPixmap.SP_DialogSaveButton, "Extract", "Extract selected files", self.extract_selected),
            (QStyle.StandardPixmap.SP_DirIcon, "Ext. All", "Extract all files to a folder", self.extract_all),
            None,
            (QStyle.StandardPixmap.SP_FileDialogDetailedView, "Bitmap", "View the allocation bitmap", self.show_bitmap_viewer),
        ]
        for item in actions:
            if item is None:
                toolbar.addSeparator()
                continue
            icon, text, tip, slot = item
            action = QAction(self.style().standardIcon(icon), text, self)
            action.setStatusTip(tip)
            action.triggered.connect(slot)
            toolbar.addAction(action)

    def create_menus(self):
        """Create the menu bar"""
        menubar = self.menuBar()

        file_menu = menubar.addMenu("&File")

        new_action = QAction("&New Image...", self)
        new_action.setShortcut(QKeySequence.StandardKey.New)
        new_action.triggered.connect(self.create_new_image)
        file_menu.addAction(new_action)

        open_action = QAction("&Open Image...", self)
        open_action.setShortcut(QKeySequence.StandardKey.Open)
        open_action.triggered.connect(self.open_image)
        file_menu.addAction(open_action)

        close_action = QAction("&Close Image", self)
        close_action.setShortcut(QKeySequence("Ctrl+W"))
        close_action.triggered.connect(self.close_image)
        file_menu.addAction(close_action)

        file_menu.addSeparator()

        format_action = QAction("&Format Image...", self)
        format_action.setShortcut(QKeySequence("Ctrl+Shift+F"))
        format_action.triggered.connect(self.format_image)
        file_menu.addAction(format_action)

        file_menu.addSeparator()

        exit_action = QAction("E&xit", self)
        exit_action.setShortcut(QKeySequence("Ctrl+Q"))
        exit_action.triggered.connect(self.close)
        file_menu.addAction(exit_action)

        edit_menu = menubar.addMenu("&Edit")

        add_action = QAction("&Add Files...", self)
        add_action.triggered.connect(self.add_files)
        edit_menu.addAction(add_action)

        extract_action = QAction("&Extract Selected...", self)
        extract_action.setShortcut(QKeySequence("Ctrl+E"))
        extract_action.triggered.connect(self.extract_selected)
        edit_menu.addAction(extract_action)

        extract_all_action = QAction("Extract A&ll...", self)
        extract_all_action.triggered.connect(self.extract_all)
        edit_menu.addAction(extract_all_action)

        edit_menu.addSeparator()

        select_all_action = QAction("Select &All", self)
        select_all_action.setShortcut(QKeySequence.StandardKey.SelectAll)
        select_all_action.triggered.connect(self.table_select_all)
        edit_menu.addAction(select_all_action)

        view_menu = menubar.addMenu("&View")

        boot_action = QAction("&Boot Record...", self)
        boot_action.triggered.connect(self.show_boot_record_info)
        view_menu.addAction(boot_action)

        dir_action = QAction("Root &Directory...", self)
        dir_action.triggered.connect(self.show_root_directory_info)
        view_menu.addAction(dir_action)

        bitmap_action = QAction("Allocation B&itmap...", self)
        bitmap_action.triggered.connect(self.show_bitmap_viewer)
        view_menu.addAction(bitmap_action)

        check_action = QAction("&Check Consistency", self)
        check_action.triggered.connect(self.check_image)
        view_menu.addAction(check_action)

        view_menu.addSeparator()

        theme_menu = view_menu.addMenu("&Theme")
        theme_group = QActionGroup(self)
        for mode, label in (('light', "&Light"), ('dark', "&Dark")):
            action = QAction(label, self)
            action.setCheckable(True)
            action.setChecked(self.theme_mode == mode)
            action.triggered.connect(lambda checked, m=mode: self.change_theme(m))
            theme_group.addAction(action)
            theme_menu.addAction(action)

        log_action = QAction("&Log...", self)
        log_action.triggered.connect(self.view_log)
        view_menu.addAction(log_action)

        options_menu = menubar.addMenu("&Options")
        warn_duplicates_action = QAction("&Warn on Duplicate Names", self)
        warn_duplicates_action.setCheckable(True)
        warn_duplicates_action.setChecked(self.warn_duplicates)
        warn_duplicates_action.triggered.connect(self.toggle_warn_duplicates)
        options_menu.addAction(warn_duplicates_action)

        help_menu = menubar.addMenu("&Help")
        about_action = QAction("&About", self)
        about_action.triggered.connect(self.show_about)
        help_menu.addAction(about_action)

    def toggle_warn_duplicates(self):
        self.warn_duplicates = not self.warn_duplicates
        self.settings.setValue('warn_duplicates', self.warn_duplicates)

    def change_theme(self, theme_mode):
        self.theme_mode = theme_mode
        self.settings.setValue('theme_mode', theme_mode)
        self.apply_theme(theme_mode)

    def apply_theme(self, theme_mode):
        palette = get_dark_palette() if theme_mode == 'dark' else get_light_palette()
        QApplication.instance().setPalette(palette)

    def table_select_all(self):
        self.table.selectAll()

    def _require_image(self) -> bool:
        if not self.image:
            QMessageBox.information(
                self,
                "No Image Loaded",
                "Please create a new image or open an existing one first."
            )
            return False
        return True

    def load_image(self, filepath: str):
        """Load a CAB image, offering to format raw images"""
        try:
            self.image = CABImage(filepath)
        except CABInvalidImageError as e:
            self.logger.warning(f"Cannot load {filepath}: {e}")
            response = QMessageBox.question(
                self,
                "Unformatted Image",
                f"{Path(filepath).name} is not a formatted CAB image ({e}).\n\nFormat it now?",
                QMessageBox.StandardButton.Yes | QMessageBox.StandardButton.No,
                QMessageBox.StandardButton.No
            )
            if response != QMessageBox.StandardButton.Yes or not self._format_path(filepath):
                self._clear_image()
                return
            self.image = CABImage(filepath)
        except (CABError, OSError) as e:
            self.logger.error(f"Failed to load image {filepath}: {e}", exc_info=True)
            QMessageBox.critical(self, "Error", f"Failed to load image: {e}")
            self._clear_image()
            return

        self.image_path = filepath
        self.setWindowTitle(f"CABManager - {Path(filepath).name}")
        self.settings.setValue('last_image_path', filepath)
        self.refresh_file_list()
        self.status_bar.showMessage(f"Loaded: {Path(filepath).name}")
        self.logger.info(f"Loaded image: {filepath}")

    def _clear_image(self):
        self.image = None
        self.image_path = None
        self.setWindowTitle("CABManager")
        self.table.clear()
        self.info_label.setText("")

    def refresh_file_list(self):
        """Refresh the file list from the image"""
        self.table.clear()
        if not self.image:
            return

        try:
            entries = self.image.read_root_directory()
        except CABError as e:
            self.logger.error(f"Failed to read directory: {e}")
            QMessageBox.critical(self, "Error", f"Failed to read directory: {e}")
            return

        filter_text = self.search_input.text().lower()
        for entry in entries:
            if filter_text and filter_text not in entry.name.lower():
                continue

            blocks = entry.block_count(self.image.block_size)
            item = SizeTreeWidgetItem([
                entry.name,
                format_file_type(entry.file_type),
                format_size(entry.size_bytes),
                str(entry.first_block),
                str(blocks),
            ])
            item.setData(0, Qt.ItemDataRole.UserRole, entry)
            item.setData(2, Qt.ItemDataRole.UserRole + 1, entry.size_bytes)
            item.setData(3, Qt.ItemDataRole.UserRole + 1, entry.first_block)
            item.setData(4, Qt.ItemDataRole.UserRole + 1, blocks)
            self.table.addTopLevelItem(item)

        used = len(entries)
        self.info_label.setText(
            f"{used}/{self.image.directory_capacity} entries | "
            f"{format_size(self.image.get_free_space())} free | "
            f"{self.image.get_format_name()}"
        )

    def selected_entries(self):
        return [item.data(0, Qt.ItemDataRole.UserRole) for item in self.table.selectedItems()]

    def add_files(self):
        """Add files to the image via file dialog"""
        if not self._require_image():
            return

        filenames, _ = QFileDialog.getOpenFileNames(self, "Select files to add", "", "All files (*.*)")
        if filenames:
            self.add_files_from_list(filenames)

    def add_files_from_list(self, filenames: list) -> int:
        """Write host files into the image (used by the dialog and drag-drop)"""
        if not self.image:
            return 0

        filenames = sorted(filenames, key=lambda x: Path(x).name.lower())
        success_count = 0
        skipped = []

        for filepath in filenames:
            name = Path(filepath).name
            try:
                with open(filepath, 'rb') as f:
                    data = f.read()

                if self.image.search_file(name) is not None:
                    # Files cannot be deleted or replaced, only skipped
                    self.logger.info(f"Skipping '{name}': already present")
                    skipped.append(name)
                    if self.warn_duplicates:
                        QMessageBox.warning(
                            self, "File Exists",
                            f"'{name}' already exists in the image and CAB images cannot replace files.")
                    continue

                self.image.write_file_to_image(name, data)
                success_count += 1
            except CABCorruptionError as e:
                # Stop writing into an image that no longer verifies
                self.logger.critical(f"Image corrupt while adding {name}: {e}")
                QMessageBox.critical(self, "Image Corruption", f"Failed to add '{name}':\n{e}")
                break
            except CABError as e:
                self.logger.warning(f"Failed to add {name}: {e}")
                QMessageBox.critical(self, "Error", f"Failed to add '{name}':\n{e}")
            except OSError as e:
                self.logger.error(f"Failed to read {filepath}: {e}", exc_info=True)
                QMessageBox.critical(self, "Error", f"Failed to read '{filepath}':\n{e}")

        self.refresh_file_list()
        message = f"Added {success_count} file(s)"
        if skipped:
            message += f", skipped {len(skipped)} duplicate name(s): {', '.join(skipped)}"
        if success_count > 0 or skipped:
            self.status_bar.showMessage(message)
            self.logger.info(message)
        return success_count

    def dragEnterEvent(self, event):
        if event.mimeData().hasUrls() and self.image:
            event.acceptProposedAction()
        else:
            event.ignore()

    def dropEvent(self, event):
        filenames = [url.toLocalFile() for url in event.mimeData().urls()
                     if url.isLocalFile() and os.path.isfile(url.toLocalFile())]
        if filenames:
            self.add_files_from_list(filenames)
            event.acceptProposedAction()

    def _extract_entries(self, entries, save_dir: str) -> int:
        success_count = 0
        for entry in entries:
            try:
                self.image.extract_to_directory(entry, save_dir)
                success_count += 1
            except CABCorruptionError as e:
                self.logger.error(f"Corruption extracting {entry.name}: {e}")
                QMessageBox.critical(self, "Image Corruption", f"Cannot extract '{entry.name}':\n{e}")
            except (CABError, OSError) as e:
                self.logger.error(f"Failed to extract {entry.name}: {e}", exc_info=True)
                QMessageBox.critical(self, "Error", f"Failed to extract {entry.name}: {e}")

        if success_count > 0:
            self.logger.info(f"Extracted {success_count} file(s) to {save_dir}")
            self.status_bar.showMessage(f"Extracted {success_count} file(s) to {save_dir}")
        return success_count

    def extract_selected(self):
        """Extract selected files"""
        if not self._require_image():
            return

        entries = self.selected_entries()
        if not entries:
            QMessageBox.information(self, "Info", "Please select files to extract")
            return

        save_dir = QFileDialog.getExistingDirectory(self, "Select folder to save files")
        if save_dir:
            self._extract_entries(entries, save_dir)

    def extract_all(self):
        """Extract all files"""
        if not self._require_image():
            return

        entries = self.image.read_root_directory()
        if not entries:
            QMessageBox.information(self, "Info", "The image contains no files")
            return

        save_dir = QFileDialog.getExistingDirectory(self, "Select folder to save all files")
        if save_dir:
            self._extract_entries(entries, save_dir)

    def create_new_image(self):
        """Create a new blank CAB image"""
        dialog = NewImageDialog(self)
        if dialog.exec() != QDialog.DialogCode.Accepted:
            return

        filename, _ = QFileDialog.getSaveFileName(
            self, "Create New Image", "", "CAB images (*.img);;All files (*.*)")
        if not filename:
            return
        if not filename.lower().endswith('.img'):
            filename += '.img'

        try:
            CABImage.create_empty_image(filename, dialog.selected_format)
        except (CABError, OSError) as e:
            self.logger.error(f"Failed to create image: {e}", exc_info=True)
            QMessageBox.critical(self, "Error", f"Failed to create image: {e}")
            return

        self.logger.info(f"Created new image: {filename}")
        self.load_image(filename)

    def open_image(self):
        filename, _ = QFileDialog.getOpenFileName(
            self, "Open Image", "", "CAB images (*.img);;All files (*.*)")
        if filename:
            self.load_image(filename)

    def close_image(self):
        if self.image:
            self.logger.info(f"Closed image: {self.image_path}")
        self._clear_image()
        self.settings.setValue('last_image_path', '')
        self.status_bar.showMessage("Image closed")

    def _format_path(self, filepath: str, block_size: int = None, directory_capacity: int = None) -> bool:
        """Ask for a geometry and format the file; returns True on success"""
        dialog = FormatDialog(block_size or DEFAULT_BLOCK_SIZE,
                              directory_capacity or DEFAULT_DIRECTORY_CAPACITY, self)
        if dialog.exec() != QDialog.DialogCode.Accepted:
            return False

        try:
            fmt = CABFormat(block_size=dialog.block_size, directory_capacity=dialog.directory_capacity)
            CABImage.format_image(filepath, fmt)
        except (CABError, ValueError, OSError) as e:
            self.logger.error(f"Failed to format {filepath}: {e}", exc_info=True)
            QMessageBox.critical(self, "Error", f"Failed to format image: {e}")
            return False

        self.logger.info(f"Formatted {filepath}")
        return True

    def format_image(self):
        """Reformat the loaded image"""
        if not self._require_image():
            return

        response = QMessageBox.warning(
            self,
            "Format Image",
            " WARNING: This will remove ALL files from the image!\n\n"
            f"Image: {Path(self.image_path).name}\n\n"
            "Are you sure you want to format this image?",
            QMessageBox.StandardButton.Yes | QMessageBox.StandardButton.No,
            QMessageBox.StandardButton.No
        )
        if response != QMessageBox.StandardButton.Yes:
            return

        if self._format_path(self.image_path, self.image.block_size, self.image.directory_capacity):
            self.load_image(self.image_path)
            self.status_bar.showMessage("Image formatted - all files removed")

    def show_boot_record_info(self):
        if self._require_image():
            BootRecordViewer(self.image, self).exec()

    def show_root_directory_info(self):
        if self._require_image():
            DirectoryViewer(self.image, self).exec()

    def show_bitmap_viewer(self):
        if self._require_image():
            BitmapViewer(self.image, self).exec()

    def check_image(self):
        if not self._require_image():
            return

        problems = self.image.check_consistency()
        if problems:
            QMessageBox.warning(self, "Consistency Check",
                                f"{len(problems)} problem(s) found:\n\n" + "\n".join(problems[:20]))
        else:
            QMessageBox.information(self, "Consistency Check", "No problems found.")

    def view_log(self):
        if self.log_viewer is None:
            self.log_viewer = LogViewer(LOG_FILE, self)
            self.log_viewer.finished.connect(self._on_log_viewer_closed)
        self.log_viewer.show()
        self.log_viewer.raise_()

    def _on_log_viewer_closed(self):
        self.log_viewer = None

    def show_about(self):
        QMessageBox.about(self, "About CABManager", about_html)

    def closeEvent(self, event):
        self.settings.setValue('window_geometry', self.saveGeometry())
        self.logger.info("Application closed")
        event.accept()


def main():
    """Main entry point"""
    app = QApplication(sys.argv)
    app.setApplicationName("CABManager")
    app.setOrganizationName("CABManager")
    app.setStyle('Fusion')

    image_path = sys.argv[1] if len(sys.argv) > 1 else None
    window = CABManagerWindow(image_path)
    window.show()

    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
