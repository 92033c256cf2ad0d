import asyncio
import fnmatch
import json
import logging
import os
import re
import shutil
import zipfile
from packaging import version
from mcinst.schemas.instances import LaunchSchema, StartupMode
from .errors import NoLaunchableEntryFound, UnsupportedModpackFormat, ValidationError

__all__ = ["ImportResolver"]

logger = logging.getLogger(__name__)


class ImportResolver:
    """Derives a launchable configuration from a jar, a modpack archive or an existing server directory"""

    script_names: tuple[str, ...] = ("start", "run", "startserver", "serverstart", "launch")
    script_suffixes: dict[str, tuple[str, ...]] = {
        "sh": (".sh",),
        "bat": (".bat", ".cmd"),
    }
    # order matters: first match wins
    jar_patterns: list[tuple[str, str]] = [
        ("neoforge", "neoforge-*.jar"),
        ("forge", "forge-*.jar"),
        ("fabric", "fabric-server-launch*.jar"),
        ("quilt", "quilt-server-launch*.jar"),
        ("paper", "paper*.jar"),
        ("purpur", "purpur*.jar"),
        ("spigot", "spigot*.jar"),
        ("vanilla", "minecraft_server*.jar"),
        ("vanilla", "server.jar"),
    ]
    ignored_jar_patterns: tuple[str, ...] = ("*-installer.jar", "*installer*.jar")
    modpack_suffixes: tuple[str, ...] = (".zip", ".mrpack")
    loaders: tuple[str, ...] = ("forge", "neoforge", "fabric", "quilt")

    def __init__(self, modpacks_dir: str) -> None:
        self._modpacks_dir: str = modpacks_dir

    async def resolve_jar(self, jar_path: str, startup_mode: StartupMode) -> LaunchSchema:
        """Raw import: the entry is taken as supplied, only its kind is checked"""
        jar_path = os.path.abspath(os.path.expanduser(jar_path))

        if not os.path.isfile(jar_path):
            raise ValidationError("jar_path", f"File {jar_path} does not exist")

        if self._startup_mode_for(jar_path) != startup_mode:
            raise ValidationError("startup_mode", f"Startup mode {startup_mode} does not match {os.path.basename(jar_path)}")

        (core_type, mc_version, core_version) = self._detect_from_name(os.path.basename(jar_path))

        return LaunchSchema(
            path=os.path.dirname(jar_path),
            jar_path=jar_path,
            startup_mode=startup_mode,
            core_type=core_type,
            core_version=core_version,
            mc_version=mc_version,
        )

    async def resolve_modpack(self, modpack_path: str, *, target: str) -> LaunchSchema:
        """Extract a modpack archive into <modpacks_dir>/<target> and locate its server entry"""
        modpack_path = os.path.abspath(os.path.expanduser(modpack_path))

        if not os.path.isfile(modpack_path):
            raise ValidationError("modpack_path", f"File {modpack_path} does not exist")

        if not modpack_path.lower().endswith(self.modpack_suffixes):
            raise UnsupportedModpackFormat(f"Unsupported modpack archive: {os.path.basename(modpack_path)}")

        extract_dir = os.path.join(self._modpacks_dir, target)

        try:
            await self._extract(modpack_path, extract_dir)

            root = self._descend_single_dir(extract_dir)
            launch = await asyncio.to_thread(self._locate_modpack_entry, root)
        except Exception:
            await asyncio.to_thread(shutil.rmtree, extract_dir, True)
            raise

        logger.info(f"Modpack {os.path.basename(modpack_path)} resolved to {launch.jar_path} ({launch.startup_mode})")

        return launch

    async def resolve_existing(self, server_path: str, startup_mode: StartupMode, executable_path: str | None = None) -> LaunchSchema:
        """Adopt an existing installation, preferring an explicit executable when given"""
        server_path = os.path.abspath(os.path.expanduser(server_path))

        if not os.path.isdir(server_path):
            raise ValidationError("server_path", f"Directory {server_path} does not exist")

        if executable_path:
            entry = executable_path if os.path.isabs(executable_path) else os.path.join(server_path, executable_path)

            if not os.path.isfile(entry):
                raise ValidationError("executable_path", f"File {entry} does not exist")

            detected_mode = self._startup_mode_for(entry)

            if not detected_mode:
                raise NoLaunchableEntryFound(f"Cannot determine how to launch {entry}")
        else:
            entry = await asyncio.to_thread(self._find_entry, server_path, startup_mode)

            if not entry:
                raise NoLaunchableEntryFound(f"No server jar or launch script found in {server_path}")

            detected_mode = self._startup_mode_for(entry)

        (core_type, mc_version, core_version) = await asyncio.to_thread(self._detect_from_dir, server_path, entry)

        logger.info(f"Existing installation {server_path} resolved to {entry} ({detected_mode})")

        return LaunchSchema(
            path=server_path,
            jar_path=os.path.abspath(entry),
            startup_mode=detected_mode,
            core_type=core_type,
            core_version=core_version,
            mc_version=mc_version,
        )

    async def discard_modpack(self, target: str) -> None:
        """Remove the extraction directory of a modpack that did not get registered"""
        extract_dir = os.path.join(self._modpacks_dir, target)

        if os.path.exists(extract_dir):
            await asyncio.to_thread(shutil.rmtree, extract_dir)
            logger.info(f"Removed modpack directory {extract_dir}")

    async def _extract(self, archive: str, extract_dir: str) -> None:
        logger.info(f"Extracting modpack archive {archive} to {extract_dir}")

        try:
            with zipfile.ZipFile(archive, "r") as zip_ref:
                target = os.path.realpath(extract_dir)

                for member in zip_ref.namelist():
                    member_path = os.path.realpath(os.path.join(target, member))

                    if os.path.commonpath([target, member_path]) != target:
                        raise UnsupportedModpackFormat(f"Archive member {member} escapes the extraction directory")

                os.makedirs(extract_dir, exist_ok=True)
                await asyncio.to_thread(zip_ref.extractall, extract_dir)
        except zipfile.BadZipFile as e:
            raise UnsupportedModpackFormat(f"Modpack is not a valid archive: {e}") from e

    def _descend_single_dir(self, extract_dir: str) -> str:
        entries = [e for e in os.listdir(extract_dir) if e != "__MACOSX"]

        if len(entries) == 1 and os.path.isdir(os.path.join(extract_dir, entries[0])):
            return os.path.join(extract_dir, entries[0])

        return extract_dir

    def _locate_modpack_entry(self, root: str) -> LaunchSchema:
        (core_type, mc_version, core_version) = self._read_manifest(root)

        native = "bat" if os.name == "nt" else "sh"
        foreign = "sh" if native == "bat" else "bat"

        entry = self._find_script(root, native) or self._find_jar(root) or self._find_script(root, foreign)

        if not entry:
            raise UnsupportedModpackFormat("No recognizable server entry point in modpack")

        if core_type == "unknown":
            (core_type, detected_mc, core_version) = self._detect_from_dir(root, entry)
            mc_version = mc_version if mc_version != "unknown" else detected_mc

        return LaunchSchema(
            path=root,
            jar_path=entry,
            startup_mode=self._startup_mode_for(entry),
            core_type=core_type,
            core_version=core_version,
            mc_version=mc_version,
        )

    def _read_manifest(self, root: str) -> tuple[str, str, str]:
        modrinth_index = os.path.join(root, "modrinth.index.json")
        curseforge_manifest = os.path.join(root, "manifest.json")

        try:
            if os.path.isfile(modrinth_index):
                with open(modrinth_index, "r", encoding="utf-8") as f:
                    deps = json.load(f).get("dependencies", {})

                mc_version = deps.get("minecraft", "unknown")

                for key, core_type in (("neoforge", "neoforge"), ("forge", "forge"), ("fabric-loader", "fabric"), ("quilt-loader", "quilt")):
                    if key in deps:
                        return core_type, mc_version, deps[key]

                return "unknown", mc_version, ""

            if os.path.isfile(curseforge_manifest):
                with open(curseforge_manifest, "r", encoding="utf-8") as f:
                    minecraft = json.load(f).get("minecraft", {})

                mc_version = minecraft.get("version", "unknown")
                loaders = minecraft.get("modLoaders", [])
                primary = next((l for l in loaders if l.get("primary")), loaders[0] if loaders else None)

                if primary and "-" in primary.get("id", ""):
                    (core_type, core_version) = primary["id"].split("-", 1)
                    return core_type, mc_version, core_version

                return "unknown", mc_version, ""
        except (json.JSONDecodeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable modpack manifest: {e}")

        return "unknown", "unknown", ""

    def _find_entry(self, root: str, startup_mode: StartupMode) -> str | None:
        if startup_mode == "jar":
            return self._find_jar(root) or self._find_script(root, "sh") or self._find_script(root, "bat")

        other = "bat" if startup_mode == "sh" else "sh"

        return self._find_script(root, startup_mode) or self._find_jar(root) or self._find_script(root, other)

    def _find_script(self, root: str, startup_mode: str) -> str | None:
        suffixes = self.script_suffixes[startup_mode]
        candidates = []

        for name in sorted(os.listdir(root)):
            path = os.path.join(root, name)

            if not os.path.isfile(path):
                continue

            (stem, ext) = os.path.splitext(name.lower())

            if ext in suffixes:
                candidates.append((0 if stem in self.script_names else 1, path))
            elif not ext and startup_mode == "sh" and stem in self.script_names and self._has_shebang(path):
                candidates.append((0, path))

        if not candidates:
            return None

        candidates.sort(key=lambda c: c[0])

        return candidates[0][1]

    def _find_jar(self, root: str) -> str | None:
        jars = [
            name
            for name in sorted(os.listdir(root))
            if name.lower().endswith(".jar")
            and os.path.isfile(os.path.join(root, name))
            and not any(fnmatch.fnmatch(name.lower(), p) for p in self.ignored_jar_patterns)
        ]

        for _, pattern in self.jar_patterns:
            for name in jars:
                if fnmatch.fnmatch(name.lower(), pattern):
                    return os.path.join(root, name)

        if len(jars) == 1:
            return os.path.join(root, jars[0])

        return None

    def _detect_from_dir(self, root: str, entry: str) -> tuple[str, str, str]:
        if entry.lower().endswith(".jar"):
            return self._detect_from_name(os.path.basename(entry))

        # scripts usually launch a jar sitting next to them
        jar = self._find_jar(root)

        if jar:
            return self._detect_from_name(os.path.basename(jar))

        return "unknown", "unknown", ""

    def _detect_from_name(self, filename: str) -> tuple[str, str, str]:
        name = filename.lower()
        core_type = next((t for t, p in self.jar_patterns if fnmatch.fnmatch(name, p)), "unknown")

        versions = []

        for candidate in re.findall(r"\d+\.\d+(?:\.\d+)*", name):
            try:
                versions.append(str(version.Version(candidate)))
            except version.InvalidVersion:
                continue

        mc_version = versions[0] if versions else "unknown"
        core_version = versions[1] if core_type in self.loaders and len(versions) > 1 else ""

        return core_type, mc_version, core_version

    def _startup_mode_for(self, path: str) -> StartupMode | None:
        ext = os.path.splitext(path)[1].lower()

        if ext == ".jar":
            return "jar"
        elif ext in self.script_suffixes["sh"]:
            return "sh"
        elif ext in self.script_suffixes["bat"]:
            return "bat"
        elif not ext and self._has_shebang(path):
            return "sh"

        return None

    def _has_shebang(self, path: str) -> bool:
        try:
            with open(path, "rb") as f:
                return f.read(2) == b"#!"
        except OSError:
            return False
