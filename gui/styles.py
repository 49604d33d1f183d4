#!/usr/bin/env python3

# Copyright (c) 2026 Stephen P Smith
# MIT License

from PySide6.QtGui import QPalette, QColor

from cab_backend.handler import CABImage


def get_dark_palette():
    palette = QPalette()
    palette.setColor(QPalette.ColorRole.Window, QColor(53, 53, 53))
    palette.setColor(QPalette.ColorRole.WindowText, QColor(255, 255, 255))
    palette.setColor(QPalette.ColorRole.Base, QColor(35, 35, 35))
    palette.setColor(QPalette.ColorRole.AlternateBase, QColor(53, 53, 53))
    palette.setColor(QPalette.ColorRole.ToolTipBase, QColor(25, 25, 25))
    palette.setColor(QPalette.ColorRole.ToolTipText, QColor(255, 255, 255))
    palette.setColor(QPalette.ColorRole.Text, QColor(255, 255, 255))
    palette.setColor(QPalette.ColorRole.Button, QColor(53, 53, 53))
    palette.setColor(QPalette.ColorRole.ButtonText, QColor(255, 255, 255))
    palette.setColor(QPalette.ColorRole.Highlight, QColor(42, 130, 218))
    palette.setColor(QPalette.ColorRole.HighlightedText, QColor(0, 0, 0))

    disabled_color = QColor(127, 127, 127)
    palette.setColor(QPalette.ColorGroup.Disabled, QPalette.ColorRole.WindowText, disabled_color)
    palette.setColor(QPalette.ColorGroup.Disabled, QPalette.ColorRole.Text, disabled_color)
    palette.setColor(QPalette.ColorGroup.Disabled, QPalette.ColorRole.ButtonText, disabled_color)
    return palette


def get_light_palette():
    palette = QPalette()
    palette.setColor(QPalette.ColorRole.Window, QColor(240, 240, 240))
    palette.setColor(QPalette.ColorRole.WindowText, QColor(0, 0, 0))
    palette.setColor(QPalette.ColorRole.Base, QColor(255, 255, 255))
    palette.setColor(QPalette.ColorRole.AlternateBase, QColor(245, 245, 245))
    palette.setColor(QPalette.ColorRole.ToolTipBase, QColor(255, 255, 220))
    palette.setColor(QPalette.ColorRole.ToolTipText, QColor(0, 0, 0))
    palette.setColor(QPalette.ColorRole.Text, QColor(0, 0, 0))
    palette.setColor(QPalette.ColorRole.Button, QColor(240, 240, 240))
    palette.setColor(QPalette.ColorRole.ButtonText, QColor(0, 0, 0))
    palette.setColor(QPalette.ColorRole.Highlight, QColor(0, 120, 215))
    palette.setColor(QPalette.ColorRole.HighlightedText, QColor(255, 255, 255))

    disabled_color = QColor(160, 160, 160)
    palette.setColor(QPalette.ColorGroup.Disabled, QPalette.ColorRole.WindowText, disabled_color)
    palette.setColor(QPalette.ColorGroup.Disabled, QPalette.ColorRole.Text, disabled_color)
    palette.setColor(QPalette.ColorGroup.Disabled, QPalette.ColorRole.ButtonText, disabled_color)
    return palette


# Bitmap viewer cell colors: status -> (light background, dark background)
BLOCK_COLORS = {
    CABImage.BLOCK_FREE: ((240, 240, 240), (45, 45, 45)),
    CABImage.BLOCK_RESERVED: ((200, 200, 255), (60, 60, 120)),
    CABImage.BLOCK_DIRECTORY: ((255, 215, 0), (180, 140, 0)),
    CABImage.BLOCK_USED: ((144, 238, 144), (60, 120, 60)),
    CABImage.BLOCK_UNREACHABLE: ((255, 200, 200), (120, 60, 60)),
}

SELECTED_BLOCK_COLOR = ((100, 149, 237), (70, 130, 180))

BLOCK_LABELS = {
    CABImage.BLOCK_FREE: "Free",
    CABImage.BLOCK_RESERVED: "Reserved (Boot/Bitmap)",
    CABImage.BLOCK_DIRECTORY: "Root Directory",
    CABImage.BLOCK_USED: "File Data",
    CABImage.BLOCK_UNREACHABLE: "Unreachable",
}


def block_color(status: str, is_dark: bool, selected: bool = False) -> QColor:
    """Background color of a bitmap viewer cell"""
    light, dark = SELECTED_BLOCK_COLOR if selected else BLOCK_COLORS[status]
    return QColor(*(dark if is_dark else light))


toolbar_stylesheet = """
                QToolBar {
                    spacing: 4px;
                    padding: 2px;
                }
                QToolButton {
                    font-size: 10px;
                    min-width: 40px;
                    padding: 2px;
                    margin: 1px;
                    border-radius: 3px;
                }
            """
