# financeflow/notifications.py
import threading
import sib_api_v3_sdk
from sib_api_v3_sdk.rest import ApiException
from financeflow.logging_config import setup_logging

logger = setup_logging()


class EmailNotifier:
    """Transactional email through Brevo. Delivery problems never reach the caller."""

    def __init__(self, app=None):
        self.api_key = None
        self.sender = None
        self.run_async = False
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.api_key = app.config.get('BREVO_API_KEY')
        self.sender = {
            "name": app.config.get('MAIL_SENDER_NAME'),
            "email": app.config.get('MAIL_SENDER_EMAIL'),
        }
        self.run_async = app.config.get('MAIL_ASYNC', False)
        app.extensions['email_notifier'] = self

    def send(self, to, subject, text, html):
        if not self.api_key:
            logger.warning(f"Email to {to} not sent: Brevo API key is not configured.")
            return False

        try:
            configuration = sib_api_v3_sdk.Configuration()
            configuration.api_key['api-key'] = self.api_key
            api_instance = sib_api_v3_sdk.TransactionalEmailsApi(sib_api_v3_sdk.ApiClient(configuration))

            send_smtp_email = sib_api_v3_sdk.SendSmtpEmail(
                to=[{"email": to}],
                sender=self.sender,
                subject=subject,
                text_content=text,
                html_content=html
            )
            api_response = api_instance.send_transac_email(send_smtp_email)
            logger.info(f"Email '{subject}' sent to {to}: {api_response}")
            return True
        except ApiException as e:
            logger.error(f"Exception when calling TransactionalEmailsApi->send_transac_email: {e}")
        except Exception as e:
            logger.error(f"Failed to send email to {to}: {str(e)}")
        return False

    def dispatch(self, to, subject, text, html):
        """Send without holding up the request when MAIL_ASYNC is on."""
        if not self.run_async:
            self.send(to, subject, text, html)
            return
        thread = threading.Thread(target=self.send, args=(to, subject, text, html), daemon=True)
        thread.start()


notifier = EmailNotifier()
