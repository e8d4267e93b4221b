import tomllib
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent


class PackagingTestCase(unittest.TestCase):
    def setUp(self):
        with open(ROOT / "pyproject.toml", "rb") as handle:
            self.project = tomllib.load(handle)["project"]

    def test_does_not_publish_a_readme(self):
        self.assertNotIn("readme", self.project)

    def test_declares_flask_stack(self):
        names = {requirement.split(">=")[0].lower() for requirement in self.project["dependencies"]}
        self.assertTrue({"flask", "flask-sqlalchemy", "flask-wtf", "click"} <= names)


if __name__ == "__main__":
    unittest.main()
