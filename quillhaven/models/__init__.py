from quillhaven.models.principal import Principal, PrincipalPreferences, PrincipalProfile
from quillhaven.models.totp_secret import TotpSecret
from quillhaven.models.backup_code import BackupCode
from quillhaven.models.session import LoginSession
from quillhaven.models.security_event import SecurityEvent
from quillhaven.models.sync_record import SyncRecord
