"""CLI tests — the commands that work without a running server."""

import json

from click.testing import CliRunner

from sheetlink.cli.main import main
from sheetlink.services.webhook_receiver import compute_signature, verify_signature

BODY = json.dumps({"challenge": "abc", "webhookId": "wh-1"})


def test_sign_prints_signature():
    runner = CliRunner()
    result = runner.invoke(main, ["sign", "-", "--secret", "s3cr3t"], input=BODY)
    assert result.exit_code == 0
    signature = result.output.strip()
    assert signature == compute_signature("s3cr3t", BODY.encode())
    assert verify_signature("s3cr3t", BODY.encode(), signature)


def test_sign_reads_secret_from_env():
    runner = CliRunner(env={"SHEETLINK_WEBHOOK_SECRET": "from-env"})
    result = runner.invoke(main, ["sign", "-"], input=BODY)
    assert result.exit_code == 0
    assert result.output.strip() == compute_signature("from-env", BODY.encode())


def test_sign_without_secret_fails():
    runner = CliRunner(env={"SHEETLINK_WEBHOOK_SECRET": ""})
    result = runner.invoke(main, ["sign", "-"], input=BODY)
    assert result.exit_code == 1


def test_version():
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "sheetlink" in result.output
