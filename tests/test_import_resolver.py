import json
import os
import shutil
import tempfile
import unittest
from mcinst.libraries.instance_supervisor import (
    ImportResolver,
    NoLaunchableEntryFound,
    UnsupportedModpackFormat,
    ValidationError,
)
from tests.helpers import FAKE_SERVER, make_zip, write_executable, write_file

CURSEFORGE_MANIFEST = json.dumps(
    {
        "minecraft": {
            "version": "1.20.1",
            "modLoaders": [{"id": "forge-47.2.0", "primary": True}],
        },
        "manifestType": "minecraftModpack",
    }
)

MODRINTH_INDEX = json.dumps(
    {
        "formatVersion": 1,
        "game": "minecraft",
        "dependencies": {"minecraft": "1.20.1", "fabric-loader": "0.15.7"},
    }
)


class TestImportResolver(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.modpacks_dir = os.path.join(self.temp_dir, "modpacks")
        self.resolver = ImportResolver(self.modpacks_dir)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    async def test_resolve_jar_detects_core_from_name(self):
        jar = write_file(os.path.join(self.temp_dir, "forge-1.20.1-47.2.0.jar"))

        launch = await self.resolver.resolve_jar(jar, "jar")

        self.assertEqual(launch.path, self.temp_dir)
        self.assertEqual(launch.jar_path, jar)
        self.assertEqual(launch.startup_mode, "jar")
        self.assertEqual(launch.core_type, "forge")
        self.assertEqual(launch.mc_version, "1.20.1")
        self.assertEqual(launch.core_version, "47.2.0")

    async def test_resolve_jar_non_loader_has_no_core_version(self):
        jar = write_file(os.path.join(self.temp_dir, "paper-1.20.4-435.jar"))

        launch = await self.resolver.resolve_jar(jar, "jar")

        self.assertEqual(launch.core_type, "paper")
        self.assertEqual(launch.mc_version, "1.20.4")
        self.assertEqual(launch.core_version, "")

    async def test_resolve_jar_accepts_scripts(self):
        script = write_executable(os.path.join(self.temp_dir, "start.sh"), FAKE_SERVER)

        launch = await self.resolver.resolve_jar(script, "sh")

        self.assertEqual(launch.startup_mode, "sh")
        self.assertEqual(launch.core_type, "unknown")

    async def test_resolve_jar_mode_mismatch(self):
        jar = write_file(os.path.join(self.temp_dir, "server.jar"))

        with self.assertRaises(ValidationError) as ctx:
            await self.resolver.resolve_jar(jar, "sh")

        self.assertEqual(ctx.exception.field, "startup_mode")

    async def test_resolve_jar_missing_file(self):
        with self.assertRaises(ValidationError) as ctx:
            await self.resolver.resolve_jar(os.path.join(self.temp_dir, "server.jar"), "jar")

        self.assertEqual(ctx.exception.field, "jar_path")

    async def test_resolve_modpack_prefers_launch_script(self):
        archive = make_zip(
            os.path.join(self.temp_dir, "pack.zip"),
            {
                "Pack/manifest.json": CURSEFORGE_MANIFEST,
                "Pack/forge-1.20.1-47.2.0-installer.jar": "",
                "Pack/forge-1.20.1-47.2.0.jar": "",
                "Pack/startserver.sh": FAKE_SERVER,
                "Pack/mods/jei.jar": "",
            },
        )

        launch = await self.resolver.resolve_modpack(archive, target="t1")

        root = os.path.join(self.modpacks_dir, "t1", "Pack")
        self.assertEqual(launch.path, root)
        self.assertEqual(launch.jar_path, os.path.join(root, "startserver.sh"))
        self.assertEqual(launch.startup_mode, "sh")
        self.assertEqual(launch.core_type, "forge")
        self.assertEqual(launch.core_version, "47.2.0")
        self.assertEqual(launch.mc_version, "1.20.1")

    async def test_resolve_modpack_falls_back_to_jar(self):
        archive = make_zip(
            os.path.join(self.temp_dir, "pack.mrpack"),
            {
                "modrinth.index.json": MODRINTH_INDEX,
                "fabric-server-launch.jar": "",
                "start.bat": "java -jar fabric-server-launch.jar",
            },
        )

        launch = await self.resolver.resolve_modpack(archive, target="t2")

        self.assertEqual(launch.path, os.path.join(self.modpacks_dir, "t2"))
        self.assertEqual(os.path.basename(launch.jar_path), "fabric-server-launch.jar")
        self.assertEqual(launch.startup_mode, "jar")
        self.assertEqual(launch.core_type, "fabric")
        self.assertEqual(launch.core_version, "0.15.7")

    async def test_resolve_modpack_without_entry(self):
        archive = make_zip(os.path.join(self.temp_dir, "pack.zip"), {"Pack/README.txt": "hello", "Pack/mods/jei.jar": ""})

        with self.assertRaises(UnsupportedModpackFormat):
            await self.resolver.resolve_modpack(archive, target="t3")

        self.assertFalse(os.path.exists(os.path.join(self.modpacks_dir, "t3")))

    async def test_resolve_modpack_rejects_unknown_archive(self):
        archive = write_file(os.path.join(self.temp_dir, "pack.rar"), "rar")

        with self.assertRaises(UnsupportedModpackFormat):
            await self.resolver.resolve_modpack(archive, target="t4")

    async def test_resolve_modpack_rejects_corrupt_archive(self):
        archive = write_file(os.path.join(self.temp_dir, "pack.zip"), "definitely not a zip")

        with self.assertRaises(UnsupportedModpackFormat):
            await self.resolver.resolve_modpack(archive, target="t5")

        self.assertFalse(os.path.exists(os.path.join(self.modpacks_dir, "t5")))

    async def test_resolve_modpack_rejects_escaping_members(self):
        archive = make_zip(os.path.join(self.temp_dir, "pack.zip"), {"../evil.sh": FAKE_SERVER, "server.jar": ""})

        with self.assertRaises(UnsupportedModpackFormat):
            await self.resolver.resolve_modpack(archive, target="t6")

        self.assertFalse(os.path.exists(os.path.join(self.modpacks_dir, "evil.sh")))

    async def test_discard_modpack(self):
        archive = make_zip(os.path.join(self.temp_dir, "pack.zip"), {"server.jar": ""})

        await self.resolver.resolve_modpack(archive, target="t7")
        await self.resolver.discard_modpack("t7")

        self.assertFalse(os.path.exists(os.path.join(self.modpacks_dir, "t7")))

    async def test_resolve_existing_follows_startup_mode(self):
        server_dir = os.path.join(self.temp_dir, "server")
        write_file(os.path.join(server_dir, "minecraft_server.1.12.2.jar"))
        write_executable(os.path.join(server_dir, "start.sh"), FAKE_SERVER)

        launch = await self.resolver.resolve_existing(server_dir, "jar")

        self.assertEqual(os.path.basename(launch.jar_path), "minecraft_server.1.12.2.jar")
        self.assertEqual(launch.core_type, "vanilla")
        self.assertEqual(launch.mc_version, "1.12.2")

        launch = await self.resolver.resolve_existing(server_dir, "sh")

        self.assertEqual(os.path.basename(launch.jar_path), "start.sh")
        self.assertEqual(launch.startup_mode, "sh")
        # the jar next to the script still tells what the server is
        self.assertEqual(launch.core_type, "vanilla")

    async def test_resolve_existing_explicit_executable(self):
        server_dir = os.path.join(self.temp_dir, "server")
        write_file(os.path.join(server_dir, "server.jar"))
        write_executable(os.path.join(server_dir, "launch"), FAKE_SERVER)

        launch = await self.resolver.resolve_existing(server_dir, "jar", "launch")

        self.assertEqual(launch.jar_path, os.path.join(server_dir, "launch"))
        self.assertEqual(launch.startup_mode, "sh")

    async def test_resolve_existing_unknown_executable(self):
        server_dir = os.path.join(self.temp_dir, "server")
        write_file(os.path.join(server_dir, "server.exe"), "MZ")

        with self.assertRaises(NoLaunchableEntryFound):
            await self.resolver.resolve_existing(server_dir, "jar", "server.exe")

    async def test_resolve_existing_empty_directory(self):
        server_dir = os.path.join(self.temp_dir, "server")
        os.makedirs(server_dir)

        with self.assertRaises(NoLaunchableEntryFound):
            await self.resolver.resolve_existing(server_dir, "sh")

    async def test_resolve_existing_missing_directory(self):
        with self.assertRaises(ValidationError) as ctx:
            await self.resolver.resolve_existing(os.path.join(self.temp_dir, "nope"), "jar")

        self.assertEqual(ctx.exception.field, "server_path")


if __name__ == "__main__":
    unittest.main()
