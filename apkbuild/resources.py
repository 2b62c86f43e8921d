"""
Renders the string resource table and the application manifest.

Both renderers are pure: the same AppConfig always yields the same bytes.
All user supplied values are XML escaped before they are embedded.
"""
import logging
import os
from xml.sax.saxutils import escape

from apkbuild.config import AppConfig

logger = logging.getLogger(__name__)

FULLSCREEN_THEME = "@android:style/Theme.NoTitleBar.Fullscreen"
NATIVE_ACTIVITY = "android.app.NativeActivity"

_ATTR_ENTITIES = {'"': "&quot;"}


def _attr(value: str) -> str:
    return escape(value, _ATTR_ENTITIES)


def render_strings_xml(app: AppConfig) -> bytes:
    text = (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        "<resources>\n"
        f'    <string name="app_name">{escape(app.display_name)}</string>\n'
        f'    <string name="lib_name">{escape(app.app_name)}</string>\n'
        f'    <string name="package_name">{escape(app.package_name)}</string>\n'
        "</resources>\n"
    )
    return text.encode("utf-8")


def render_manifest(app: AppConfig) -> bytes:
    """
    Renders AndroidManifest.xml for a NativeActivity based app.
    The application element only carries a theme attribute when the app is fullscreen.
    """
    lines = [
        '<?xml version="1.0" encoding="utf-8" standalone="no"?>'
        '<manifest xmlns:tools="http://schemas.android.com/tools" '
        'xmlns:android="http://schemas.android.com/apk/res/android" '
        f'package="{_attr(app.package_name)}">',
    ]
    for permission in app.permissions:
        lines.append(f'    <uses-permission android:name="{_attr(permission)}"/>')

    application_attrs = [
        'android:debuggable="true"',
        'android:hasCode="false"',
        'android:label="@string/app_name"',
    ]
    if app.fullscreen:
        application_attrs.append(f'android:theme="{FULLSCREEN_THEME}"')
    application_attrs += [
        'tools:replace="android:icon,android:theme,android:allowBackup,label"',
        'android:icon="@mipmap/icon"',
        'android:requestLegacyExternalStorage="true"',
    ]
    lines += [
        f"    <application {' '.join(application_attrs)}>",
        f'        <activity android:configChanges="keyboardHidden|orientation" android:name="{NATIVE_ACTIVITY}">',
        '            <meta-data android:name="android.app.lib_name" android:value="@string/lib_name"/>',
        "            <intent-filter>",
        '                <action android:name="android.intent.action.MAIN"/>',
        '                <category android:name="android.intent.category.LAUNCHER"/>',
        "            </intent-filter>",
        "        </activity>",
        "    </application>",
        "</manifest>",
    ]
    return ("\n".join(lines) + "\n").encode("utf-8")


def _write(path: str, content: bytes) -> str:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, "wb") as f:
        f.write(content)
    logger.debug("Wrote %s (%d bytes)", path, len(content))
    return path


def strings_xml_path(app: AppConfig) -> str:
    return os.path.join(app.resource_directory, "values", "strings.xml")


def write_strings_xml(app: AppConfig) -> str:
    """Writes <resource_directory>/values/strings.xml and returns its path."""
    return _write(strings_xml_path(app), render_strings_xml(app))


def write_manifest(app: AppConfig, path: str) -> str:
    return _write(path, render_manifest(app))
