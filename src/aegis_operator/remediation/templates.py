"""Message templates for healing commits and pull requests."""

PR_TITLE = "fix({deployment}): AI-suggested remediation [Aegis #{attempt}]"

COMMIT_MESSAGE = """fix({deployment}): AI-suggested remediation by Aegis

{root_cause}
"""

PR_HEADER = """## Aegis: automated healing PR
"""

PR_SECTION_ROOT_CAUSE = """
### What happened?
{root_cause}
"""

PR_SECTION_CHANGE = """
### What did Aegis change?
- **File patched**: `{file_path}`
- **Deployment**: `{namespace}/{deployment}`
"""

PR_SECTION_PATCH = """
### YAML patch applied
```yaml
{patch}
```
"""

PR_SECTION_REMARK = """
### Aegis says
> *{witty_line}*
"""

PR_FOOTER = """
---
Healing score after this fix: **{score}**
*Review this patch carefully before merging. The diagnosis is machine-generated.*
"""
