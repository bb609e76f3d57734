"""
Constants for the APNS and HMS push gateways.
"""

# APNS Hosts
APNS_PRODUCTION_HOST = "api.push.apple.com"
APNS_DEVELOPMENT_HOST = "api.development.push.apple.com"
APNS_PORT = 443

APNS_HOSTS = {
    "development": APNS_DEVELOPMENT_HOST,
    "production": APNS_PRODUCTION_HOST,
}

# APNS API path
APNS_DEVICE_PATH = "/3/device/{device_token}"

# APNS request headers
APNS_ID_HEADER = "apns-id"
APNS_COLLAPSE_ID_HEADER = "apns-collapse-id"
APNS_PUSH_TYPE_ALERT = "alert"
APNS_PUSH_TYPE_BACKGROUND = "background"
APNS_PRIORITY_IMMEDIATE = 10
APNS_PRIORITY_CONSERVE_POWER = 5
APNS_ALLOWED_PRIORITIES = {1, 5, 10}

# JWT configuration
JWT_ALGORITHM = "ES256"
JWT_TOKEN_MAX_AGE_SECONDS = 3000  # 50 minutes, Apple rejects tokens over 1 hour

# Required transport protocol for APNS
HTTP2_VERSION = "HTTP/2"

# Reason used when an error body is absent or unparseable
UNKNOWN_PROVIDER_ERROR = "UnknownProviderError"

# APNS Error Codes (from reason field of the error body)
APNS_ERROR_CODES = {
    # Client errors
    "BadCollapseId": "The collapse identifier exceeds the maximum allowed size",
    "BadDeviceToken": "The specified device token is invalid",
    "BadExpirationDate": "The apns-expiration value is invalid",
    "BadMessageId": "The apns-id value is invalid",
    "BadPriority": "The apns-priority value is invalid",
    "BadTopic": "The apns-topic value is invalid",
    "DeviceTokenNotForTopic": "The device token doesn't match the specified topic",
    "DuplicateHeaders": "One or more headers are repeated",
    "IdleTimeout": "Idle timeout",
    "InvalidPushType": "The apns-push-type value is invalid",
    "MissingDeviceToken": "The device token is not specified in the request path",
    "MissingTopic": "The apns-topic header is missing from the request",
    "PayloadEmpty": "The message payload is empty",
    "PayloadTooLarge": "The message payload is too large",
    "TopicDisallowed": "Pushing to this topic is not allowed",

    # Token errors
    "BadCertificate": "The certificate is invalid",
    "BadCertificateEnvironment": "The client certificate is for the wrong environment",
    "ExpiredProviderToken": "The provider token is stale and a new token should be generated",
    "Forbidden": "The specified action is not allowed",
    "InvalidProviderToken": "The provider token is not valid or the token signature cannot be verified",
    "MissingProviderToken": "No provider certificate was used to connect to APNs",

    # Device token errors
    "Unregistered": "The device token is no longer active for the topic",
    "ExpiredToken": "The device token has expired",

    # Server errors
    "TooManyProviderTokenUpdates": "The provider token has been updated too often",
    "TooManyRequests": "Too many requests were made consecutively to the same device token",
    "InternalServerError": "An internal server error occurred",
    "ServiceUnavailable": "The service is unavailable",
    "Shutdown": "The server is shutting down",
}

# HTTP status code classification
APNS_RATE_LIMIT_STATUS_CODES = {429}
APNS_TOKEN_INVALID_STATUS_CODES = {410}  # Unregistered
APNS_AUTH_ERROR_STATUS_CODES = {401, 403}
APNS_TOKEN_INVALID_REASONS = {"BadDeviceToken", "Unregistered", "ExpiredToken"}
APNS_PROVIDER_TOKEN_REASONS = {"ExpiredProviderToken", "InvalidProviderToken"}

# HMS endpoints
HMS_OAUTH_URL = "https://oauth-login.cloud.huawei.com/oauth2/v2/token"
HMS_SEND_URL = "https://push-api.cloud.huawei.com/v1/{client_id}/messages:send"

# HMS OAuth grants
HMS_GRANT_CLIENT_CREDENTIALS = "client_credentials"
HMS_GRANT_REFRESH_TOKEN = "refresh_token"
OAUTH_UNKNOWN_ERROR = -1  # Non-numeric error code in a token response
HMS_TOKEN_REFRESH_MARGIN_SECONDS = 300

# HMS result codes (from the code field of the send response)
HMS_SUCCESS_CODE = "80000000"
HMS_RESULT_CODES = {
    "80000000": "Success",
    "80100000": "Some tokens are valid and others are invalid",
    "80100001": "Some request parameters are incorrect",
    "80100003": "Incorrect message structure",
    "80100004": "The message expiry time is earlier than the current time",
    "80100013": "The collapse_key value is invalid",
    "80100017": "Too many concurrent topic messages",
    "80200001": "OAuth authentication error",
    "80200003": "OAuth token expired",
    "80300002": "The app is not permitted to send messages",
    "80300007": "All tokens are invalid",
    "80300008": "The message body size exceeds the limit",
    "80300010": "The number of tokens exceeds the limit",
    "80600003": "Failed to request the OAuth service",
    "81000001": "System internal error",
}
HMS_AUTH_ERROR_CODES = {"80200001", "80200003", "80600003"}
HMS_TOKEN_INVALID_CODES = {"80300007"}
HMS_SERVER_ERROR_CODES = {"81000001"}
