"""Tests for npm lockfile parsers (package-lock.json, pnpm-lock.yaml, yarn.lock)."""

import json

from registry.npm.lockfile_parser import (
    package_name_from_path,
    parse_package_lock,
    parse_package_lock_data,
    parse_pnpm_lock,
    parse_yarn_lock,
)


class TestPackageNameFromPath:
    """Install path to package name."""

    def test_plain_and_scoped(self):
        assert package_name_from_path("node_modules/lodash") == "lodash"
        assert package_name_from_path("node_modules/@babel/core") == "@babel/core"

    def test_nested_uses_last_segment(self):
        assert package_name_from_path("node_modules/a/node_modules/@s/b") == "@s/b"

    def test_workspace_folder_is_not_a_package(self):
        assert package_name_from_path("packages/app") is None


class TestPackageLockParser:
    """Test package-lock.json parser."""

    def test_parse_package_lock_v1(self, tmp_path):
        """Test parsing package-lock.json with lockfileVersion 1."""
        lockfile_content = {
            "name": "test-package",
            "version": "1.0.0",
            "lockfileVersion": 1,
            "dependencies": {
                "lodash": {
                    "version": "4.17.21",
                    "requires": {"underscore": "^1.13.0"},
                    "dependencies": {
                        "underscore": {"version": "1.13.0"}
                    }
                },
                "express": {"version": "4.18.2", "dev": True}
            }
        }

        lockfile_path = tmp_path / "package-lock.json"
        lockfile_path.write_text(json.dumps(lockfile_content, indent=2))

        result = parse_package_lock(str(lockfile_path))

        assert set(result) == {"lodash", "express"}
        assert result["lodash"].version == "4.17.21"
        assert dict(result["lodash"].dependencies) == {"underscore": "^1.13.0"}
        assert result["express"].dev is True

    def test_parse_package_lock_v2(self, tmp_path):
        """Test parsing package-lock.json with lockfileVersion 2."""
        lockfile_content = {
            "name": "test-package",
            "version": "1.0.0",
            "lockfileVersion": 2,
            "packages": {
                "": {"name": "test-package", "version": "1.0.0"},
                "node_modules/lodash": {"version": "4.17.21"},
                "node_modules/react-dom": {
                    "version": "18.2.0",
                    "dependencies": {"scheduler": "^0.23.0"},
                    "peerDependencies": {"react": "^18.2.0"},
                },
            },
            "dependencies": {
                "lodash": {"version": "4.17.21"},
                "legacy-only": {"version": "0.1.0"},
            },
        }

        lockfile_path = tmp_path / "package-lock.json"
        lockfile_path.write_text(json.dumps(lockfile_content))

        result = parse_package_lock(str(lockfile_path))

        assert result["react-dom"].version == "18.2.0"
        assert dict(result["react-dom"].peer_dependencies) == {"react": "^18.2.0"}
        assert result["react-dom"].path == "node_modules/react-dom"
        assert "legacy-only" in result

    def test_parse_package_lock_v3_hoisted_copy_wins(self, tmp_path):
        """The top-level install is what the project resolves, not a nested copy."""
        lockfile_content = {
            "lockfileVersion": 3,
            "packages": {
                "": {"name": "app"},
                "node_modules/a/node_modules/debug": {"version": "2.6.9"},
                "node_modules/debug": {"version": "4.3.4"},
                "node_modules/a": {"version": "1.0.0"},
            },
        }
        lockfile_path = tmp_path / "package-lock.json"
        lockfile_path.write_text(json.dumps(lockfile_content))

        result = parse_package_lock(str(lockfile_path))

        assert result["debug"].version == "4.3.4"

    def test_parse_package_lock_v3_peer_optional(self, tmp_path):
        lockfile_content = {
            "lockfileVersion": 3,
            "packages": {
                "node_modules/plugin": {
                    "version": "1.0.0",
                    "peerDependencies": {"host": "^2.0.0", "extra": "*"},
                    "peerDependenciesMeta": {"extra": {"optional": True}},
                },
            },
        }
        lockfile_path = tmp_path / "package-lock.json"
        lockfile_path.write_text(json.dumps(lockfile_content))

        entry = parse_package_lock(str(lockfile_path))["plugin"]

        assert entry.peer_optional == frozenset({"extra"})

    def test_parse_package_lock_v2_scoped_packages(self, tmp_path):
        """Scoped names are matched by exact key, never by suffix."""
        lockfile_content = {
            "lockfileVersion": 2,
            "packages": {
                "": {"name": "test-package"},
                "node_modules/@types/node": {"version": "18.0.0"},
                "node_modules/@other/node": {"version": "1.0.0"},
                "node_modules/node": {"version": "0.0.1"},
            },
        }
        lockfile_path = tmp_path / "package-lock.json"
        lockfile_path.write_text(json.dumps(lockfile_content))

        result = parse_package_lock(str(lockfile_path))

        assert result["@types/node"].version == "18.0.0"
        assert result["@other/node"].version == "1.0.0"
        assert result["node"].version == "0.0.1"

    def test_flat_name_to_version_map(self):
        """Historical flat shape: {name: version}."""
        result = parse_package_lock_data({"left-pad": "1.3.0", "@s/x": "2.0.0"})

        assert result["left-pad"].version == "1.3.0"
        assert result["@s/x"].version == "2.0.0"

    def test_parse_package_lock_missing_file(self, tmp_path):
        """Test parsing non-existent package-lock.json."""
        assert parse_package_lock(str(tmp_path / "nonexistent.json")) is None

    def test_parse_package_lock_invalid_json(self, tmp_path):
        """Test parsing invalid JSON."""
        lockfile_path = tmp_path / "package-lock.json"
        lockfile_path.write_text("{ invalid json }")

        assert parse_package_lock(str(lockfile_path)) is None

    def test_parse_package_lock_top_level_not_object(self, tmp_path):
        lockfile_path = tmp_path / "package-lock.json"
        lockfile_path.write_text("[1, 2]")

        assert parse_package_lock(str(lockfile_path)) is None

    def test_parse_package_lock_v1_non_dict_dependencies(self, tmp_path):
        """Entries without a usable version are skipped."""
        lockfile_content = {
            "lockfileVersion": 1,
            "dependencies": {
                "good": {"version": "1.0.0"},
                "bad": {"resolved": "x"},
                "worse": 12,
            },
        }
        lockfile_path = tmp_path / "package-lock.json"
        lockfile_path.write_text(json.dumps(lockfile_content))

        assert set(parse_package_lock(str(lockfile_path))) == {"good"}


class TestPnpmLockParser:
    """Test pnpm-lock.yaml parser."""

    def test_v9_importers_and_packages(self, tmp_path):
        lock = """\
lockfileVersion: '9.0'
importers:
  .:
    dependencies:
      react:
        specifier: ^18.2.0
        version: 18.2.0
    devDependencies:
      '@types/react':
        specifier: ^18.0.0
        version: 18.0.1
packages:
  react@18.2.0:
    resolution: {integrity: sha512-x}
  react@17.0.2:
    resolution: {integrity: sha512-y}
  '@types/react@18.0.1':
    resolution: {integrity: sha512-z}
"""
        path = tmp_path / "pnpm-lock.yaml"
        path.write_text(lock)

        result = parse_pnpm_lock(str(path))

        assert result["react"].version == "18.2.0"
        assert result["@types/react"].version == "18.0.1"

    def test_v6_keys_with_peer_suffix(self, tmp_path):
        lock = """\
lockfileVersion: '6.0'
dependencies:
  react-dom:
    specifier: ^18.2.0
    version: 18.2.0(react@18.2.0)
packages:
  /react-dom@18.2.0(react@18.2.0):
    dependencies:
      scheduler: 0.23.0
    peerDependencies:
      react: ^18.2.0
"""
        path = tmp_path / "pnpm-lock.yaml"
        path.write_text(lock)

        entry = parse_pnpm_lock(str(path))["react-dom"]

        assert entry.version == "18.2.0"
        assert dict(entry.peer_dependencies) == {"react": "^18.2.0"}

    def test_v5_slash_keys(self, tmp_path):
        lock = """\
lockfileVersion: 5.4
specifiers:
  '@scope/pkg': ^1.0.0
dependencies:
  '@scope/pkg': 1.2.0_react@18.2.0
packages:
  /@scope/pkg/1.2.0_react@18.2.0:
    dev: false
"""
        path = tmp_path / "pnpm-lock.yaml"
        path.write_text(lock)

        assert parse_pnpm_lock(str(path))["@scope/pkg"].version == "1.2.0"

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "pnpm-lock.yaml"
        path.write_text("packages: [unclosed")

        assert parse_pnpm_lock(str(path)) is None


class TestYarnLockParser:
    """Test yarn.lock parser."""

    def test_parse_yarn_lock_v1(self, tmp_path):
        yarn_lock_content = """\
# THIS IS AN AUTOGENERATED FILE. DO NOT EDIT THIS FILE DIRECTLY.
# yarn lockfile v1


lodash@^4.17.21:
  version "4.17.21"
  resolved "https://registry.yarnpkg.com/lodash/-/lodash-4.17.21.tgz"

"@babel/core@^7.0.0", "@babel/core@^7.1.0":
  version "7.22.0"
  dependencies:
    "@babel/code-frame" "^7.22.0"
    debug "^4.1.0"
"""
        path = tmp_path / "yarn.lock"
        path.write_text(yarn_lock_content)

        result = parse_yarn_lock(str(path))

        assert result["lodash"].version == "4.17.21"
        assert result["@babel/core"].version == "7.22.0"
        assert dict(result["@babel/core"].dependencies) == {"@babel/code-frame": "^7.22.0", "debug": "^4.1.0"}

    def test_parse_yarn_berry(self, tmp_path):
        yarn_lock_content = """\
__metadata:
  version: 6

"lodash@npm:^4.17.21, lodash@npm:^4.0.0":
  version: 4.17.21
  resolution: "lodash@npm:4.17.21"
  peerDependencies:
    react: "npm:^18.0.0"
"""
        path = tmp_path / "yarn.lock"
        path.write_text(yarn_lock_content)

        result = parse_yarn_lock(str(path))

        assert result["lodash"].version == "4.17.21"
        assert dict(result["lodash"].peer_dependencies) == {"react": "^18.0.0"}

    def test_manifest_range_selects_between_versions(self, tmp_path):
        yarn_lock_content = """\
debug@^2.6.0:
  version "2.6.9"

debug@^4.1.0:
  version "4.3.4"
"""
        path = tmp_path / "yarn.lock"
        path.write_text(yarn_lock_content)

        assert parse_yarn_lock(str(path))["debug"].version == "2.6.9"
        assert parse_yarn_lock(str(path), direct_specs={"debug": "^4.1.0"})["debug"].version == "4.3.4"

    def test_parse_yarn_lock_missing_file(self, tmp_path):
        """Test parsing non-existent yarn.lock."""
        assert parse_yarn_lock(str(tmp_path / "nonexistent.lock")) is None
