"""Error types raised by the import pipeline, storage engine and tag operations."""


class ChatVaultError(Exception):
    """Base class for chatvault errors."""
    pass


class ExportImportError(ChatVaultError):
    """A file-level import failure. Raised before any store mutation."""

    user_message = "The selected file could not be parsed as a ChatGPT conversation JSON file."

    def __init__(self, detail: str = None):
        self.detail = detail
        message = self.user_message if not detail else f"{self.user_message}\nError: {detail}"
        super().__init__(message)


class EmptyFile(ExportImportError):
    user_message = "The selected file is empty."


class MalformedJSON(ExportImportError):
    user_message = "Unable to parse file."


class InvalidExportFormat(ExportImportError):
    user_message = "File is not a valid ChatGPT export (array or {conversations: [...]})"


class StorageError(ChatVaultError):
    """An underlying SQLite operation failed."""
    pass


class DuplicateTag(ChatVaultError):
    def __init__(self, tag: str, conversation_id: str):
        self.tag = tag
        self.conversation_id = conversation_id
        super().__init__(f"Tag '{tag}' already exists for this conversation.")


class InvalidTag(ChatVaultError):
    def __init__(self, tag: str):
        self.tag = tag
        super().__init__("Tag must not be empty.")


class ConversationNotFound(ChatVaultError):
    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation {conversation_id} not found")


class ImportCancelled(ChatVaultError):
    """The caller cancelled an import job and its result was discarded."""
    pass
