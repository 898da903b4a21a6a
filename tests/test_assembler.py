"""Tests for comment assembly: selection, rendering, metadata, update target."""
from __future__ import annotations

from pkg.ghcomment.assembler import CommentAssembler, Selection, embedded_var_names, with_target
from pkg.ghcomment.config import PostTemplate, Rule
from pkg.ghcomment.metadata import EmbeddedMetadata, decode, encode
from pkg.ghcomment.models import ExecutionContext, ExistingComment
from pkg.ghcomment.template import Renderer

FAILED_RULE = Rule(condition="ExitCode != 0", template="Failed: {{.Command}}")


def ctx(exit_code=1, pr_number=7, **kwargs):
    defaults = dict(
        exit_code=exit_code,
        command="make",
        joined_command="make test",
        org="acme",
        repo="app",
        pr_number=pr_number,
        sha1="abc",
        template_key="default",
    )
    defaults.update(kwargs)
    return ExecutionContext(**defaults)


def assembler():
    return CommentAssembler(renderer=Renderer(getenv={}.get))


def existing(id, template_key="default", minimized=False, author="bot"):
    meta = EmbeddedMetadata(sha1="abc", template_key=template_key, variables={"target": ""})
    return ExistingComment(id=id, body="old" + encode(meta), author_login=author, is_minimized=minimized)


class TestSelect:
    def test_no_rule_matches_on_success(self):
        assert assembler().select([FAILED_RULE], ctx(exit_code=0)) is None

    def test_matched_rule(self):
        selection = assembler().select([FAILED_RULE], ctx())
        assert selection == Selection(template="Failed: {{.Command}}")

    def test_literal_template_bypasses_rules(self):
        selection = assembler().select([FAILED_RULE], ctx(exit_code=0, template="hi", update_condition="true"))
        assert selection == Selection(template="hi", update_condition="true")

    def test_suppressing_rule_posts_nothing(self):
        rules = [Rule(condition="ExitCode != 0", suppress_comment=True), FAILED_RULE]
        assert assembler().select(rules, ctx()) is None

    def test_rule_update_condition_falls_back_to_context(self):
        selection = assembler().select([FAILED_RULE], ctx(update_condition="Comment.HasMeta"))
        assert selection.update_condition == "Comment.HasMeta"

    def test_rule_update_condition_takes_precedence(self):
        rule = Rule(condition="true", template="x", update_condition="false")
        selection = assembler().select([rule], ctx(update_condition="true"))
        assert selection.update_condition == "false"

    def test_conditions_can_read_default_target(self):
        rule = Rule(condition='Vars.target == ""', template="x")
        assert assembler().select([rule], ctx()) is not None


class TestAssemble:
    def test_renders_body_with_metadata(self):
        comment = assembler().build([FAILED_RULE], ctx(), {})
        assert comment.body == "Failed: make" + encode(
            EmbeddedMetadata(sha1="abc", template_key="default", variables={"target": ""})
        )
        meta, found = decode(comment.body)
        assert found is True
        assert meta.variables == {"target": ""}
        assert comment.comment_id is None

    def test_embedded_vars_always_include_target(self):
        rule = Rule(condition="true", template="x", embedded_var_names=("foo",))
        context = ctx(variables={"foo": "bar", "secret": "s3cr3t"})
        comment = assembler().build([rule], context, {})
        meta, _ = decode(comment.body)
        assert meta.variables == {"foo": "bar", "target": ""}

    def test_body_for_too_long_gets_metadata_too(self):
        rule = Rule(condition="true", template="long", template_for_too_long="short {{.ExitCode}}")
        comment = assembler().build([rule], ctx(), {})
        assert comment.body_for_too_long.startswith("short 1\n<!-- ghcomment: ")

    def test_uses_named_templates(self):
        rule = Rule(condition="true", template='{{template "status" .}}')
        comment = assembler().build([rule], ctx(), {"status": ":x:"})
        assert comment.body.startswith(":x:\n<!--")

    def test_updates_last_matching_comment(self):
        selection = Selection(template="x", update_condition='Comment.Meta.TemplateKey == "default"')
        comments = [existing(1), existing(2), existing(3, template_key="lint")]
        comment = assembler().assemble(selection, ctx(), {}, comments, "bot")
        assert comment.comment_id == 2

    def test_minimized_comments_are_never_updated(self):
        selection = Selection(template="x", update_condition="Comment.HasMeta")
        comments = [existing(1, minimized=True), existing(2, minimized=True)]
        comment = assembler().assemble(selection, ctx(), {}, comments, "bot")
        assert comment.comment_id is None

    def test_commit_comment_skips_resolution(self):
        selection = Selection(template="x", update_condition="Comment.HasMeta")
        a = assembler()
        assert a.needs_existing_comments(selection, ctx(pr_number=0)) is False
        comment = a.assemble(selection, ctx(pr_number=0), {}, [existing(1)], "bot")
        assert comment.comment_id is None


class TestHelpers:
    def test_embedded_var_names_dedupes(self):
        assert embedded_var_names(["foo", "foo"]) == ["foo", "target"]
        assert embedded_var_names(["target", "foo"]) == ["target", "foo"]

    def test_with_target_keeps_existing_value(self):
        context = ctx(variables={"target": "plan"})
        assert with_target(context) is context
        assert with_target(ctx()).variables == {"target": ""}

    def test_selection_from_post_template(self):
        post = PostTemplate(template="t", template_for_too_long="s", embedded_var_names=("a",))
        selection = Selection.from_post_template(post, "Comment.HasMeta")
        assert selection == Selection(
            template="t",
            template_for_too_long="s",
            update_condition="Comment.HasMeta",
            embedded_var_names=("a",),
        )
