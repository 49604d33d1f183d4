about_html = """<h2>CABManager</h2>

        <p>A tool for managing files in CAB flat filesystem images.</p>

        <p><b>Features:</b></p>
        <table border="0" width="100%">
        <tr>
        <td valign="top" width="50%">
        <ul>
        <li>Toolbar with Light/Dark themes</li>
        <li>Create new blank images from presets</li>
        <li>Open and format existing raw images</li>
        <li>Writes directly to image (no mounting)</li>
        <li>First-fit contiguous block allocation</li>
        <li>Drag and drop support</li>
        </ul>
        </td>

        <td valign="top" width="50%">
        <ul>
        <li>Extract files (selected or all)</li>
        <li>Search/Filter files by filename</li>
        <li>Boot Record, Root Directory & Bitmap Viewers</li>
        <li>Consistency check</li>
        <li>Log Viewer</li>
        <li>Remembers last opened image and settings</li>
        </ul>
        </td>
        </tr>
        </table>

        <p><b>Keyboard Shortcuts:</b></p>
        <ul>
        <li>Ctrl+A - Select all</li>
        <li>Ctrl+N - Create new image</li>
        <li>Ctrl+O - Open image</li>
        <li>Ctrl+W - Close image</li>
        <li>Ctrl+E - Extract selected files</li>
        <li>Ctrl+Shift+F - Format image</li>
        <li>Ctrl+Q - Exit CABManager</li>
        </ul>

        <p align="center"><small>© 2026 Stephen P Smith | MIT License</small></p>
        """
