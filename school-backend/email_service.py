import sib_api_v3_sdk
from sib_api_v3_sdk.rest import ApiException

from config import Settings


def _transactional_api(settings: Settings) -> sib_api_v3_sdk.TransactionalEmailsApi:
    configuration = sib_api_v3_sdk.Configuration()
    configuration.api_key['api-key'] = settings.brevo_api_key
    return sib_api_v3_sdk.TransactionalEmailsApi(sib_api_v3_sdk.ApiClient(configuration))


def send_password_reset_email(settings: Settings, to_email: str, name: str, reset_link: str) -> bool:
    """Send password reset link using Brevo"""
    if not settings.brevo_api_key or not settings.from_email:
        print(f"⚠️ Email not configured, skipping password reset email to {to_email}")
        return False

    try:
        html = f"""
        <!DOCTYPE html>
        <html lang="en">
        <head>
            <meta charset="UTF-8">
            <title>Password Reset</title>
        </head>
        <body style="margin: 0; padding: 0; font-family: Arial, sans-serif; background-color: #f4f6f8;">
            <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%">
                <tr>
                    <td style="padding: 40px 20px;">
                        <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%" style="max-width: 600px; margin: 0 auto; background: white; border-radius: 12px;">
                            <tr>
                                <td style="background: #1e3a8a; padding: 40px; text-align: center; border-radius: 12px 12px 0 0;">
                                    <h1 style="margin: 0; color: white; font-size: 26px;">Password Reset</h1>
                                </td>
                            </tr>
                            <tr>
                                <td style="padding: 40px;">
                                    <h2 style="margin: 0 0 20px 0; color: #1f2937; font-size: 22px;">Hi {name},</h2>
                                    <p style="margin: 0 0 30px 0; color: #4b5563; font-size: 15px; line-height: 1.6;">
                                        We received a request to reset the password of your school account. The link below is valid for one hour.
                                    </p>
                                    <p style="text-align: center; margin: 0 0 30px 0;">
                                        <a href="{reset_link}" style="display: inline-block; padding: 14px 32px; background: #1e3a8a; color: white; text-decoration: none; border-radius: 8px; font-weight: 600;">Reset Password</a>
                                    </p>
                                    <p style="margin: 0; color: #9ca3af; font-size: 13px;">
                                        If you did not request this, you can ignore this email.
                                    </p>
                                </td>
                            </tr>
                        </table>
                    </td>
                </tr>
            </table>
        </body>
        </html>
        """

        send_smtp_email = sib_api_v3_sdk.SendSmtpEmail(
            to=[{"email": to_email, "name": name}],
            sender={"email": settings.from_email, "name": "School Administration"},
            subject="Reset Your School Account Password",
            html_content=html
        )

        _transactional_api(settings).send_transac_email(send_smtp_email)
        print(f"✅ Password reset email sent to {to_email}")
        return True

    except ApiException as e:
        print(f"❌ Brevo API error: {e}")
        return False
    except Exception as e:
        print(f"❌ Error sending reset email: {e}")
        return False
