"""
Tests for the batch pipeline (extract -> minhash -> compare).
"""

import sqlite3

import pytest

from pipeline import run


@pytest.fixture
def datadir(tmp_path, gcc_listing):
    asm = tmp_path / "asm"
    asm.mkdir()
    (asm / "a.s").write_text(gcc_listing)
    (asm / "b.s").write_text(gcc_listing)
    return tmp_path


@pytest.fixture
def con():
    con = sqlite3.connect(":memory:")
    run.create_tables(con)
    yield con
    con.close()


def rows(con, table):
    return con.execute(f"SELECT * FROM {table} ORDER BY 1, 2, 3").fetchall()


class TestExtract:
    """The extract action."""

    def test_extract_listing_unscoped_uses_file_stem(self, datadir, con):
        count = run.extract_listing(str(datadir / "asm" / "a.s"), sqlite_con=con)
        assert count == 1
        assert rows(con, "constant") == [("a.s", "a", 0, "22")]

    def test_extract_listing_per_function(self, datadir, con):
        count = run.extract_listing(str(datadir / "asm" / "a.s"), ["foo", "main"], sqlite_con=con)
        assert count == 3
        assert rows(con, "constant") == [
            ("a.s", "foo", 0, "22"),
            ("a.s", "main", 0, "33"),
            ("a.s", "main", 1, "44"),
        ]

    def test_extract_without_db(self, datadir):
        assert run.extract_listing(str(datadir / "asm" / "a.s"), ["main"]) == 2

    def test_extract_dir_skips_existing_rows(self, datadir, con):
        assert run.extract_dir(str(datadir), con, ["foo", "main"]) == (2, 6)
        assert run.extract_dir(str(datadir), con, ["foo", "main"]) == (2, 6)
        assert len(rows(con, "constant")) == 6

    def test_extract_dir_tokens_mode(self, datadir, con):
        run.extract_dir(str(datadir), con, ["main"], mode="tokens")
        values = [r[3] for r in rows(con, "constant")]
        assert values == ["33", "44", "33", "44"]


class TestMinhash:
    """Fingerprinting and comparing constant sets."""

    @pytest.fixture(autouse=True)
    def extracted(self, datadir, con):
        run.extract_dir(str(datadir), con, ["foo", "main"])

    def test_function_constants(self, con):
        assert run.function_constants(con) == {
            ("a.s", "foo"): {"22"},
            ("a.s", "main"): {"33", "44"},
            ("b.s", "foo"): {"22"},
            ("b.s", "main"): {"33", "44"},
        }

    def test_hash_constants_skips_existing(self, con):
        assert run.hash_constants(con) == (4, 0)
        assert run.hash_constants(con) == (0, 4)
        hashvals = con.execute("SELECT hashvals FROM constminhash").fetchone()[0]
        assert len(hashvals.split(",")) == run.MINHASH_PERMS

    def test_compare_same_function(self, con):
        run.hash_constants(con)
        assert run.compare_functions(con, ["main"]) == [("a.s:main", "b.s:main", 1.0)]

    def test_compare_different_functions(self, con):
        run.hash_constants(con)
        scores = {(a, b): s for a, b, s in run.compare_functions(con)}
        assert len(scores) == 6
        assert scores[("a.s:foo", "a.s:main")] < 0.5

    def test_find_matches(self, con):
        run.hash_constants(con)
        matches = {(a, b) for a, b, _ in run.find_matches(con, 0.5)}
        assert matches == {("a.s:foo", "b.s:foo"), ("a.s:main", "b.s:main")}

    def test_permutations_are_kept_apart(self, con):
        run.hash_constants(con, perms=32)
        assert run.compare_functions(con, ["main"]) == []
        assert run.compare_functions(con, ["main"], perms=32) == [("a.s:main", "b.s:main", 1.0)]

    def test_colon_in_filename(self, tmp_path, gcc_listing, con):
        path = tmp_path / "lib:v2.s"
        path.write_text(gcc_listing)
        run.extract_listing(str(path), ["main"], sqlite_con=con)
        run.hash_constants(con)
        stored = con.execute(
            "SELECT filename, fname FROM constminhash WHERE filename = ?", ("lib:v2.s",)).fetchall()
        assert stored == [("lib:v2.s", "main")]
        assert ("lib:v2.s", "main") in run.load_minhashes(con, ["main"])


class TestCommandLine:
    """python -m pipeline.run"""

    def test_full_run(self, datadir, capsys):
        d = str(datadir)
        run.main(["run", "-d", d, "-f", "foo,main", "extract"])
        assert "extracted 6 constants from 2 listings" in capsys.readouterr().out
        assert (datadir / "db" / run.DBNAME).exists()

        run.main(["run", "-d", d, "minhash"])
        assert "calculated 4 hashes, skipped 0" in capsys.readouterr().err

        run.main(["run", "-d", d, "-f", "main", "compare"])
        captured = capsys.readouterr()
        assert captured.out.splitlines() == [
            "filefunc0,filefunc1,permutations,jaccard",
            "a.s:main,b.s:main,64,1.0",
        ]
        assert "mean jaccard: 1.0" in captured.err

        run.main(["run", "-d", d, "-t", "0.9", "matches"])
        assert capsys.readouterr().out.splitlines() == [
            "a.s:foo,b.s:foo,1.0",
            "a.s:main,b.s:main,1.0",
        ]

    def test_compare_needs_names(self, datadir):
        with pytest.raises(SystemExit) as exc:
            run.main(["run", "-d", str(datadir), "compare"])
        assert exc.value.code == 1

    def test_compare_with_empty_name_list(self, datadir, capsys):
        with pytest.raises(SystemExit) as exc:
            run.main(["run", "-d", str(datadir), "-f", ",", "compare"])
        assert exc.value.code == 1
        assert "please specify function name" in capsys.readouterr().out

    @pytest.mark.parametrize("argv", [
        ["run"],
        ["run", "tokenize"],
        ["run", "-p", "many", "extract"],
        ["run", "-m", "intel", "extract"],
    ])
    def test_usage_errors(self, argv, capsys):
        with pytest.raises(SystemExit) as exc:
            run.main(argv)
        assert exc.value.code == 1
        assert "usage" in capsys.readouterr().out
