# User-facing strings
class Strings:
    # Errors
    TRY_AGAIN_LATER = "Something went wrong while saving. Please check your connection and try again."
    UNAUTHORIZED = "Unauthorized"
    SURVEY_NOT_FOUND = "Survey session not found or expired. Please start again."
    MATCH_NOT_FOUND = "This selection has expired. Please submit your contact details again."
    INVALID_PAYLOAD = "Please fill in all required fields"

    # Field validation
    SELECT_OPTION = "Please select an option"
    FIELD_REQUIRED = "This field is required"
    SELECT_AT_LEAST_ONE = "Please select at least one option"
    TOO_MANY_SELECTIONS = "Please select at most {limit} options"
    INVALID_RATING = "Please choose a rating between 1 and 5"
    FIX_REQUIRED_FIELDS = "Please fill in all required fields"

    # Survey flow
    SURVEY_SUBMITTED = "Thank you for taking the time to complete our survey."
    COMPLETION_TIME = "Completion time: {duration}"

    # Contact linking
    CONTACT_LINKED = "Thank you, {name}! Your contact information has been successfully linked to your survey submission."
    NO_MATCH = "We couldn't find a survey submission matching your answers."
    NO_MATCH_RETRY = "Try Different Answers"
    NO_MATCH_RESTART = "Take the Full Survey"
    MULTIPLE_MATCHES = "We found {count} submissions that might be yours. Please select the correct one."
    MATCH_CANCELLED = "No changes were made."
    UNKNOWN_DATE = "Unknown date"

    # Activity feed
    ACTIVITY_MESSAGES = {
        "survey_started": "User started survey",
        "step_completed": "User completed step {step}",
        "survey_completed": "User completed survey",
        "survey_abandoned": "User abandoned survey",
        "contact_linked": "Contact details linked to a submission",
    }
    UNKNOWN_ACTIVITY = "Unknown activity: {type}"

    # Friendly option labels
    OPTION_LABELS = {
        "interest": {
            "yes": "Yes",
            "no": "No",
            "not_sure": "Not sure yet",
        },
        "market_obstacle": {
            "connections": "Lack of connections to buyers",
            "quality_volume": "Quality/Volume requirements",
            "transport_cost": "High transport costs",
            "competition": "Competition",
            "branding": "Branding/Marketing issues",
        },
        "innovation_barrier": {
            "capital": "Limited Capital",
            "technical_knowledge": "Technical Knowledge",
            "market_access": "Market Access",
            "regulatory": "Regulatory Issues",
        },
    }
