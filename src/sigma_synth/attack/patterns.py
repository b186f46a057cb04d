"""
Curated detection patterns per ATT&CK technique and log source.

Each technique maps ``product|service|category`` keys to a hand-written
pattern: named selection blocks, a required/optional split and the
boolean condition that ties them together. The synthesizer uses these
when no external rule yields usable fields, and the curated matcher uses
the key set as its relevance table.

Values may carry Sigma-style leading/trailing ``*`` wildcards; they are
normalized into ``|contains``/``|startswith``/``|endswith`` modifiers
when the pattern is turned into a condition set.

References:
- MITRE ATT&CK: https://attack.mitre.org/
- SigmaHQ rules: https://github.com/SigmaHQ/sigma
- Splunk Security Content: https://github.com/splunk/security_content
"""

from dataclasses import dataclass, field
from typing import Literal


@dataclass(frozen=True)
class SelectionBlock:
    """One named selection of a curated pattern."""

    name: str
    conditions: dict[str, list[str]]
    optional: bool = False


@dataclass(frozen=True)
class DetectionPattern:
    """Detection logic for one technique on one log source."""

    description: str
    selections: list[SelectionBlock]
    fields: list[str] = field(default_factory=list)

    # How optional blocks attach to the required ones
    join: Literal["and", "or"] = "and"

    # Explicit condition; overrides the required/optional composition
    condition: str | None = None

    def condition_expression(self) -> str:
        """Boolean condition over the selection names."""
        if self.condition:
            return self.condition

        required = [s.name for s in self.selections if not s.optional]
        optional = [s.name for s in self.selections if s.optional]

        if not optional:
            return " and ".join(required)

        optional_part = optional[0] if len(optional) == 1 else f"({' or '.join(optional)})"
        if not required:
            return optional_part
        return f"{' and '.join(required)} {self.join} {optional_part}"


@dataclass(frozen=True)
class TechniquePatterns:
    """All curated patterns for one technique."""

    id: str
    name: str
    patterns: dict[str, DetectionPattern]
    references: list[str] = field(default_factory=list)


# =============================================================================
# Curated Pattern Library
# Keyed by technique ID, then by product|service|category
# =============================================================================

PATTERN_LIBRARY: dict[str, TechniquePatterns] = {
    # =========================================================================
    # EXECUTION
    # =========================================================================
    "T1059.001": TechniquePatterns(
        id="T1059.001",
        name="Command and Scripting Interpreter: PowerShell",
        patterns={
            "windows|security|process_creation": DetectionPattern(
                description="Detects PowerShell process execution",
                fields=["Image", "CommandLine", "User", "ParentImage"],
                selections=[
                    SelectionBlock(
                        name="selection_powershell",
                        conditions={"Image": ["*powershell.exe", "*pwsh.exe"]},
                    ),
                    SelectionBlock(
                        name="selection_obfuscation",
                        conditions={
                            "CommandLine": [
                                "*-EncodedCommand*",
                                "*-enc*",
                                "*bypass*",
                                "*IEX*",
                                "*Invoke-Expression*",
                            ]
                        },
                        optional=True,
                    ),
                ],
                join="or",
            ),
            "windows|sysmon|process_creation": DetectionPattern(
                description="Detects PowerShell process execution via Sysmon",
                fields=["Image", "CommandLine", "User", "ParentImage", "IntegrityLevel"],
                selections=[
                    SelectionBlock(
                        name="selection",
                        conditions={
                            "Image": ["*powershell.exe", "*pwsh.exe"],
                            "CommandLine": ["*-EncodedCommand*", "*-enc*", "*bypass*", "*IEX*"],
                        },
                    ),
                ],
            ),
            "linux|auditd|process_creation": DetectionPattern(
                description="Detects PowerShell invocation on Linux",
                fields=["Image", "CommandLine", "User", "ProcessName"],
                selections=[
                    SelectionBlock(
                        name="selection",
                        conditions={
                            "Image|contains": ["pwsh"],
                            "CommandLine|contains": ["-EncodedCommand", "bypass"],
                        },
                    ),
                ],
            ),
        },
        references=["https://attack.mitre.org/techniques/T1059/001/"],
    ),
    "T1059.003": TechniquePatterns(
        id="T1059.003",
        name="Command and Scripting Interpreter: Windows Command Shell",
        patterns={
            "windows|sysmon|process_creation": DetectionPattern(
                description="Detects cmd.exe launched with command execution switches",
                fields=["Image", "CommandLine", "ParentImage"],
                selections=[
                    SelectionBlock(
                        name="selection",
                        conditions={
                            "Image|endswith": ["\\cmd.exe"],
                            "CommandLine|contains": [" /c ", " /k ", " /r "],
                        },
                    ),
                ],
            ),
            "windows|security|process_creation": DetectionPattern(
                description="Detects cmd.exe process creation in the Security log",
                fields=["NewProcessName", "CommandLine", "ParentProcessName"],
                selections=[
                    SelectionBlock(
                        name="selection",
                        conditions={
                            "NewProcessName|endswith": ["\\cmd.exe"],
                            "CommandLine|contains": [" /c ", " /k "],
                        },
                    ),
                ],
            ),
        },
        references=["https://attack.mitre.org/techniques/T1059/003/"],
    ),
    "T1047": TechniquePatterns(
        id="T1047",
        name="Windows Management Instrumentation",
        patterns={
            "windows|sysmon|process_creation": DetectionPattern(
                description="Detects remote or process-spawning WMIC usage",
                fields=["Image", "CommandLine", "ParentImage"],
                selections=[
                    SelectionBlock(
                        name="selection_wmic",
                        conditions={
                            "Image|endswith": ["\\wmic.exe"],
                            "CommandLine|contains": ["process call create", "/node:"],
                        },
                    ),
                    SelectionBlock(
                        name="selection_wmiprvse_child",
                        conditions={
                            "ParentImage|endswith": ["\\WmiPrvSE.exe"],
                            "Image|endswith": ["\\cmd.exe", "\\powershell.exe"],
                        },
                        optional=True,
                    ),
                ],
                join="or",
            ),
        },
        references=["https://attack.mitre.org/techniques/T1047/"],
    ),
    "T1053.005": TechniquePatterns(
        id="T1053.005",
        name="Scheduled Task/Job: Scheduled Task",
        patterns={
            "windows|sysmon|process_creation": DetectionPattern(
                description="Detects scheduled task creation with schtasks.exe",
                fields=["Image", "CommandLine", "User"],
                selections=[
                    SelectionBlock(
                        name="selection",
                        conditions={
                            "Image|endswith": ["\\schtasks.exe"],
                            "CommandLine|contains": ["/create"],
                        },
                    ),
                    SelectionBlock(
                        name="selection_privileged",
                        conditions={
                            "CommandLine|contains": ["/ru system", "/sc onlogon", "/sc onstart"],
                        },
                        optional=True,
                    ),
                ],
            ),
        },
        references=["https://attack.mitre.org/techniques/T1053/005/"],
    ),
    # =========================================================================
    # INITIAL ACCESS
    # =========================================================================
    "T1190": TechniquePatterns(
        id="T1190",
        name="Exploit Public-Facing Application",
        patterns={
            "windows|sysmon|process_creation": DetectionPattern(
                description="Detects potential web application exploitation",
                fields=["Image", "CommandLine", "ParentImage", "ParentCommandLine"],
                selections=[
                    SelectionBlock(
                        name="selection_web_process",
                        conditions={
                            "ParentImage|endswith": [
                                "w3wp.exe",
                                "apache.exe",
                                "nginx.exe",
                                "java.exe",
                                "node.exe",
                            ]
                        },
                    ),
                    SelectionBlock(
                        name="selection_suspicious_child",
                        conditions={
                            "Image|endswith": ["cmd.exe", "powershell.exe", "bash", "sh"],
                        },
                    ),
                ],
            ),
            "linux|auditd|process_creation": DetectionPattern(
                description="Detects web server spawning suspicious child processes",
                fields=["ParentProcessName", "Image", "CommandLine", "User"],
                selections=[
                    SelectionBlock(
                        name="selection",
                        conditions={
                            "ParentProcessName": ["apache2", "nginx", "java", "node"],
                            "Image": ["bash", "sh", "python"],
                        },
                    ),
                ],
            ),
        },
        references=["https://attack.mitre.org/techniques/T1190/"],
    ),
    "T1566.001": TechniquePatterns(
        id="T1566.001",
        name="Phishing: Spearphishing Attachment",
        patterns={
            "m365|entra_id|authentication": DetectionPattern(
                description="Detects phishing attachment indicators",
                fields=["SenderEmailAddress", "AttachmentCount", "URLCount", "UserAgent"],
                selections=[
                    SelectionBlock(
                        name="selection_attachment",
                        conditions={
                            "AttachmentCount": ["1", "2", "3", "4", "5"],
                            "AttachmentExtension": ["exe", "dll", "scr", "zip", "rar", "iso"],
                        },
                    ),
                ],
            ),
        },
        references=["https://attack.mitre.org/techniques/T1566/001/"],
    ),
    # =========================================================================
    # PERSISTENCE / PRIVILEGE ESCALATION
    # =========================================================================
    "T1078.001": TechniquePatterns(
        id="T1078.001",
        name="Valid Accounts: Default Accounts",
        patterns={
            "windows|security|process_creation": DetectionPattern(
                description="Detects default account abuse",
                fields=["User", "SubjectUserName", "LogonId", "ProcessId"],
                selections=[
                    SelectionBlock(
                        name="selection_defaults",
                        conditions={
                            "SubjectUserName|endswith": [
                                "$",
                                "SYSTEM",
                                "LOCAL SERVICE",
                                "NETWORK SERVICE",
                            ]
                        },
                    ),
                    SelectionBlock(
                        name="selection_anomalous",
                        # TokenElevationTypeDefault / TokenElevationTypeFull
                        conditions={"TokenElevationType": ["%%1937", "%%1938"]},
                        optional=True,
                    ),
                ],
            ),
            "windows|defender|process_creation": DetectionPattern(
                description="Detects default account usage via Defender",
                fields=["AccountName", "ProcessIntegrityLevel", "ProcessTokenElevation"],
                selections=[
                    SelectionBlock(
                        name="selection",
                        conditions={
                            "AccountName|endswith": ["$", "SYSTEM"],
                            "ProcessTokenElevation": ["TokenElevated"],
                        },
                    ),
                ],
            ),
            "m365|entra_id|authentication": DetectionPattern(
                description="Detects suspicious authentication patterns",
                fields=["AccountName", "RiskLevel", "AuthenticationDetails", "Location"],
                selections=[
                    SelectionBlock(
                        name="selection",
                        conditions={
                            "RiskLevel": ["high"],
                            "AuthenticationDetails|contains": ["MFA failed"],
                        },
                    ),
                ],
            ),
        },
        references=["https://attack.mitre.org/techniques/T1078/001/"],
    ),
    # =========================================================================
    # CREDENTIAL ACCESS
    # =========================================================================
    "T1003.001": TechniquePatterns(
        id="T1003.001",
        name="OS Credential Dumping: LSASS Memory",
        patterns={
            "windows|sysmon|process_access": DetectionPattern(
                description="Detects handle requests against lsass.exe with read access",
                fields=["SourceImage", "TargetImage", "GrantedAccess"],
                selections=[
                    SelectionBlock(
                        name="selection",
                        conditions={
                            "TargetImage|endswith": ["\\lsass.exe"],
                            "GrantedAccess": ["0x1010", "0x1410", "0x1438", "0x143a", "0x1fffff"],
                        },
                    ),
                ],
            ),
            "windows|sysmon|process_creation": DetectionPattern(
                description="Detects LSASS dumping with procdump or comsvcs.dll",
                fields=["Image", "CommandLine"],
                selections=[
                    SelectionBlock(
                        name="selection_procdump",
                        conditions={
                            "Image|endswith": ["\\procdump.exe", "\\procdump64.exe"],
                            "CommandLine|contains": ["lsass"],
                        },
                    ),
                    SelectionBlock(
                        name="selection_comsvcs",
                        conditions={"CommandLine|contains": ["comsvcs.dll", "MiniDump"]},
                        optional=True,
                    ),
                ],
                join="or",
            ),
        },
        references=["https://attack.mitre.org/techniques/T1003/001/"],
    ),
    "T1110": TechniquePatterns(
        id="T1110",
        name="Brute Force",
        patterns={
            "windows|security|authentication": DetectionPattern(
                description="Detects failed network and remote interactive logons",
                fields=["EventID", "LogonType", "TargetUserName", "IpAddress"],
                selections=[
                    SelectionBlock(
                        name="selection",
                        conditions={"EventID": ["4625"], "LogonType": ["3", "10"]},
                    ),
                ],
            ),
            "linux|auditd|authentication": DetectionPattern(
                description="Detects failed user authentication records",
                fields=["type", "res", "acct", "addr"],
                selections=[
                    SelectionBlock(
                        name="selection",
                        conditions={"type": ["USER_AUTH", "USER_LOGIN"], "res": ["failed"]},
                    ),
                ],
            ),
        },
        references=["https://attack.mitre.org/techniques/T1110/"],
    ),
    # =========================================================================
    # DEFENSE EVASION
    # =========================================================================
    "T1070.001": TechniquePatterns(
        id="T1070.001",
        name="Indicator Removal: Clear Windows Event Logs",
        patterns={
            "windows|security|process_creation": DetectionPattern(
                description="Detects attempts to clear Windows event logs",
                fields=["Image", "CommandLine", "User", "ParentImage"],
                selections=[
                    SelectionBlock(
                        name="selection_wevtutil",
                        conditions={
                            "Image|endswith": ["wevtutil.exe"],
                            "CommandLine|contains": ["cl", "clear-log", "delete-log"],
                        },
                    ),
                    SelectionBlock(
                        name="selection_powershell",
                        conditions={
                            "Image|endswith": ["powershell.exe"],
                            "CommandLine|contains": [
                                "Clear-EventLog",
                                "Remove-EventLog",
                                "Get-EventLog",
                            ],
                        },
                    ),
                ],
                condition="selection_wevtutil or selection_powershell",
            ),
            "windows|sysmon|process_creation": DetectionPattern(
                description="Detects event log clearing via Sysmon",
                fields=["Image", "CommandLine", "IntegrityLevel", "User"],
                selections=[
                    SelectionBlock(
                        name="selection",
                        conditions={
                            "Image|endswith": ["wevtutil.exe", "powershell.exe"],
                            "CommandLine|contains": ["clear-log", "Clear-EventLog", "delete-log"],
                            "IntegrityLevel": ["System"],
                        },
                    ),
                ],
            ),
        },
        references=["https://attack.mitre.org/techniques/T1070/001/"],
    ),
    # =========================================================================
    # IMPACT
    # =========================================================================
    "T1486": TechniquePatterns(
        id="T1486",
        name="Data Encrypted for Impact",
        patterns={
            "windows|sysmon|process_creation": DetectionPattern(
                description="Detects suspicious file encryption activities",
                fields=["Image", "CommandLine", "ParentImage", "User"],
                selections=[
                    SelectionBlock(
                        name="selection_encryption_tools",
                        conditions={
                            "Image|endswith": [
                                "cipher.exe",
                                "certutil.exe",
                                "openssl.exe",
                                "gpg.exe",
                            ],
                            "CommandLine|contains": ["/k", "-e", "-encrypt", "-aes", "enc"],
                        },
                    ),
                    SelectionBlock(
                        name="selection_bulk_operations",
                        conditions={"CommandLine|contains": ["/s", "/r", "-r", "recurse"]},
                        optional=True,
                    ),
                ],
            ),
            "linux|auditd|process_creation": DetectionPattern(
                description="Detects file encryption commands on Linux",
                fields=["Image", "CommandLine", "User", "ProcessId"],
                selections=[
                    SelectionBlock(
                        name="selection",
                        conditions={
                            "Image|endswith": ["openssl", "gpg", "cryptsetup"],
                            "CommandLine|contains": ["enc", "-e", "-encrypt"],
                        },
                    ),
                ],
            ),
            "windows|defender|process_creation": DetectionPattern(
                description="Detects encryption tool usage via Defender",
                fields=["InitiatingProcessFileName", "ProcessCommandLine", "AccountName"],
                selections=[
                    SelectionBlock(
                        name="selection",
                        conditions={
                            "InitiatingProcessFileName|endswith": ["cipher.exe", "certutil.exe"],
                            "ProcessCommandLine|contains": ["/k", "-e"],
                        },
                    ),
                ],
            ),
        },
        references=["https://attack.mitre.org/techniques/T1486/"],
    ),
    "T1490": TechniquePatterns(
        id="T1490",
        name="Inhibit System Recovery",
        patterns={
            "windows|sysmon|process_creation": DetectionPattern(
                description="Detects shadow copy deletion and recovery tampering",
                fields=["Image", "CommandLine", "User"],
                selections=[
                    SelectionBlock(
                        name="selection_vssadmin",
                        conditions={
                            "Image|endswith": ["\\vssadmin.exe"],
                            "CommandLine|contains": ["delete shadows", "resize shadowstorage"],
                        },
                    ),
                    SelectionBlock(
                        name="selection_wmic",
                        conditions={
                            "Image|endswith": ["\\wmic.exe"],
                            "CommandLine|contains": ["shadowcopy delete"],
                        },
                    ),
                    SelectionBlock(
                        name="selection_bcdedit",
                        conditions={
                            "Image|endswith": ["\\bcdedit.exe"],
                            "CommandLine|contains": [
                                "recoveryenabled no",
                                "bootstatuspolicy ignoreallfailures",
                            ],
                        },
                    ),
                ],
                condition="1 of selection_*",
            ),
        },
        references=["https://attack.mitre.org/techniques/T1490/"],
    ),
}


def get_technique_patterns(technique_id: str) -> TechniquePatterns | None:
    """Get the curated patterns for a technique."""
    return PATTERN_LIBRARY.get(technique_id)


def get_pattern(technique_id: str, pattern_key: str) -> DetectionPattern | None:
    """Get the pattern for a technique on a ``product|service|category`` key."""
    entry = PATTERN_LIBRARY.get(technique_id)
    if entry is None:
        return None
    return entry.patterns.get(pattern_key)


def get_techniques_for_log_source(pattern_key: str) -> list[TechniquePatterns]:
    """Get all techniques with a curated pattern for a log source key."""
    return [t for t in PATTERN_LIBRARY.values() if pattern_key in t.patterns]
