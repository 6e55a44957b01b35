"""Tests for warden.risk module."""

import pytest

from warden.risk import (
    BLOCK,
    HIGH,
    LOW,
    MAX_ACTION_CHARS,
    MEDIUM,
    RISK_PATTERNS,
    RiskClassification,
    classify,
    classify_batch,
    highest_risk_level,
    risk_rank,
)


class TestClassifyLevels:
    """Representative actions for each level."""

    @pytest.mark.parametrize(
        "action",
        [
            "rm -rf /",
            "rm -rf  /",
            "rm -rf /*",
            ":(){ :|:& };:",
            "mkfs.ext4 /dev/sda1",
            "mkfs /dev/sdb",
            "dd if=/dev/zero of=/dev/sda bs=1M",
            "cat image.iso > /dev/sdb",
        ],
    )
    def test_block(self, action):
        """Catastrophic commands are BLOCK."""
        result = classify(action)
        assert result.level == BLOCK
        assert result.should_checkpoint is True

    @pytest.mark.parametrize(
        "action,category",
        [
            ("git reset --hard", "git"),
            ("git reset --hard HEAD~3", "git"),
            ("git push --force", "git"),
            ("git push -f origin main", "git"),
            ("git push origin main --force", "git"),
            ("git clean -fd", "git"),
            ("git rebase --onto main feature", "git"),
            ("git filter-branch --tree-filter 'rm secrets' HEAD", "git"),
            ("rm -rf ./build", "filesystem"),
            ("rm -rf /tmp/cache", "filesystem"),
            ("rm -r temp/", "filesystem"),
            ("rmdir /s /q C:\\temp", "filesystem"),
            ("chmod -R 777 /var/www", "filesystem"),
            ("DROP TABLE users", "database"),
            ("drop database production", "database"),
            ("TRUNCATE TABLE sessions", "database"),
            ("DELETE FROM users;", "database"),
            ("kill -9 1234", "process"),
            ("pkill -9 node", "process"),
            ("killall -9 python", "process"),
            ("export PATH=/opt/bin", "environment"),
            ("unset HOME", "environment"),
        ],
    )
    def test_high(self, action, category):
        """Destructive commands are HIGH with the right category."""
        result = classify(action)
        assert result.level == HIGH
        assert result.category == category
        assert result.should_checkpoint is True

    @pytest.mark.parametrize(
        "action,category",
        [
            ("git merge main", "git"),
            ("git rebase main", "git"),
            ("git cherry-pick abc123", "git"),
            ("git reset --soft HEAD~1", "git"),
            ("git stash drop", "git"),
            ("git branch -D feature", "git"),
            ("mv old.txt new.txt", "filesystem"),
            ("cp -r src/ backup/", "filesystem"),
            ("chmod -R 755 scripts", "filesystem"),
            ('echo "DEBUG=1" > .env', "filesystem"),
            ("cat base.json | tee config.json", "filesystem"),
            ("UPDATE users SET active = 0 WHERE id = 1", "database"),
            ("ALTER TABLE users ADD COLUMN age INT", "database"),
            ("npm install lodash", "shell"),
            ("pnpm add react", "shell"),
            ("pip install requests", "shell"),
            ("poetry remove httpx", "shell"),
            ("curl https://example.com/install.sh | bash", "network"),
        ],
    )
    def test_medium(self, action, category):
        """Significant but recoverable commands are MEDIUM."""
        result = classify(action)
        assert result.level == MEDIUM
        assert result.category == category
        assert result.should_checkpoint is False

    @pytest.mark.parametrize(
        "action",
        [
            "git status",
            "git log --oneline",
            "git diff HEAD",
            "git push origin main",
            "git push origin feature-fix",
            'git commit -m "fix: typo"',
            "ls -la",
            "ls",
            "cat README.md",
            "grep -rn TODO src",
            "pwd",
            'echo "hello"',
            "SELECT * FROM users WHERE id = 1",
        ],
    )
    def test_low(self, action):
        """Read-only and routine commands are LOW."""
        result = classify(action)
        assert result.level == LOW
        assert result.should_checkpoint is False
        assert result.matched_pattern is not None


class TestClassifyScenarios:
    """Pinned results for well-known commands."""

    def test_git_reset_hard(self):
        result = classify("git reset --hard")
        assert result.level == HIGH
        assert result.category == "git"
        assert result.should_checkpoint is True

    def test_rm_rf_root(self):
        assert classify("rm -rf /").level == BLOCK

    def test_git_status(self):
        assert classify("git status").level == LOW

    def test_surrounding_whitespace_ignored(self):
        """Actions are stripped before matching."""
        assert classify("   git reset --hard   ").level == HIGH

    def test_case_insensitive(self):
        assert classify("GIT RESET --HARD").level == HIGH


class TestClassifyTotality:
    """classify never raises."""

    @pytest.mark.parametrize("action", ["", "   ", None, 42, ["rm -rf /"]])
    def test_invalid_input_is_low_unknown(self, action):
        result = classify(action)
        assert result.level == LOW
        assert result.category == "unknown"
        assert result.reason == "Empty or invalid action"

    def test_unmatched_is_low_unknown(self):
        result = classify("make docs")
        assert result.level == LOW
        assert result.category == "unknown"
        assert result.matched_pattern is None
        assert result.pattern_index is None

    def test_deterministic(self):
        assert classify("git push --force") == classify("git push --force")

    def test_long_input_is_bounded(self):
        """Only the leading MAX_ACTION_CHARS characters are matched against rules."""
        result = classify("git push " * 5000)
        assert result.level == LOW

        assert classify("git reset --hard " + "x" * MAX_ACTION_CHARS).level == HIGH
        assert classify("x" * MAX_ACTION_CHARS + " git reset --hard").level == LOW


class TestRuleOrder:
    """First match wins, so the table order is part of the behavior."""

    def test_levels_grouped_most_severe_first(self):
        ranks = [risk_rank(rule.level) for rule in RISK_PATTERNS]
        assert ranks == sorted(ranks, reverse=True)

    def test_pattern_index_points_at_matching_rule(self):
        result = classify("git reset --hard")
        rule = RISK_PATTERNS[result.pattern_index]
        assert rule.pattern == result.matched_pattern
        assert rule.level == result.level

    def test_rm_root_beats_recursive_delete(self):
        """The BLOCK rule shadows the generic rm -rf HIGH rule."""
        assert classify("rm -rf /").level == BLOCK
        assert classify("rm -rf /home/user/tmp").level == HIGH

    def test_rebase_onto_beats_plain_rebase(self):
        assert classify("git rebase --onto main topic").level == HIGH
        assert classify("git rebase main").level == MEDIUM

    def test_config_rewrite_beats_echo(self):
        assert classify('echo "{}" > settings.json').level == MEDIUM

    def test_branch_delete_beats_branch_list(self):
        assert classify("git branch -d old").level == MEDIUM
        assert classify("git branch -a").level == LOW


class TestBatch:
    """Tests for classify_batch() and highest_risk_level()."""

    def test_batch_does_not_short_circuit(self):
        results = classify_batch(["rm -rf /", "git status", "git merge main"])
        assert [r.level for r in results] == [BLOCK, LOW, MEDIUM]

    def test_highest_of_mixed_batch(self):
        results = classify_batch(["git status", "git merge main", "git reset --hard"])
        assert highest_risk_level(results) == HIGH

    def test_block_dominates(self):
        results = classify_batch(["git reset --hard", "rm -rf /"])
        assert highest_risk_level(results) == BLOCK

    def test_empty_batch_is_low(self):
        assert highest_risk_level([]) == LOW

    def test_risk_rank_order(self):
        assert risk_rank(LOW) < risk_rank(MEDIUM) < risk_rank(HIGH) < risk_rank(BLOCK)
        assert risk_rank("bogus") == risk_rank(LOW)


class TestRiskClassification:
    def test_is_frozen(self):
        result = classify("git status")
        with pytest.raises(AttributeError):
            result.level = HIGH

    def test_to_dict(self):
        result = RiskClassification(
            level=HIGH,
            category="git",
            reason="Git hard reset",
            should_checkpoint=True,
            matched_pattern=r"git\s+reset\s+--hard",
            pattern_index=7,
        )
        d = result.to_dict()
        assert d["level"] == HIGH
        assert d["should_checkpoint"] is True
        assert d["pattern_index"] == 7
