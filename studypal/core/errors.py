"""Error taxonomy shared by the extraction, generation, chat and quiz layers."""


class StudyPalError(Exception):
    """Base class for every error raised by studypal."""


class ConfigurationError(StudyPalError):
    """A required setting (usually the API credential) is missing or invalid."""


class ExtractionError(StudyPalError):
    """The uploaded file could not be read, or yielded no usable content."""


class DependencyUnavailableError(ExtractionError):
    """The PDF library could not be imported."""


class GenerationError(StudyPalError):
    """A summary or structured generation request failed or returned unusable data."""


class ChatRequestError(StudyPalError):
    """A single chat turn failed. The conversation itself stays usable."""


class QuizFormatError(StudyPalError):
    """A <quiz_data> block was present but did not hold a valid quiz."""
