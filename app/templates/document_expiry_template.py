document_expiry_subject_template = (
    "Document Expiry Alert - {machine_number} ({document_type})"
)

document_expiry_text_template = """Document Expiry Alert

Machine: {machine_number}
Machine Name: {machine_name}
Document Type: {document_type}
Expiry Date: {expiry_date}

{status_line}

Please renew this document immediately to avoid compliance issues and ensure uninterrupted operations.

This is an automated notification from the rental back office.
"""

document_expiry_html_template = """<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #0081C9;">Document Expiry Alert</h2>

  <div style="background-color: #f8f9fa; padding: 20px; border-radius: 8px; margin: 20px 0;">
    <p><strong>Machine:</strong> {machine_number}</p>
    <p><strong>Machine Name:</strong> {machine_name}</p>
    <p><strong>Document Type:</strong> {document_type}</p>
    <p><strong>Expiry Date:</strong> {expiry_date}</p>
  </div>

  <div style="background-color: {background_color}; border-left: 4px solid {urgency_color}; padding: 15px; margin: 20px 0;">
    <p style="color: {urgency_color}; font-weight: bold; margin: 0;">{status_line}</p>
  </div>

  <p>Please renew this document immediately to avoid compliance issues and ensure uninterrupted operations.</p>

  <hr style="border: none; border-top: 1px solid #eee; margin: 30px 0;">
  <p style="color: #666; font-size: 12px;">
    This is an automated notification from the rental back office.
  </p>
</div>
"""

# urgency -> (text color, background color)
document_expiry_urgency_colors = {
    "expired": ("red", "#fee"),
    "urgent": ("orange", "#fff3cd"),
    "upcoming": ("blue", "#e7f3ff"),
}

email_test_subject_template = "Email Configuration Test - Rental Back Office"

email_test_text_template = """Email Configuration Test

This is a test email to verify your email configuration is working correctly.

Timestamp: {timestamp}
From: {from_address}
Admin Emails: {admin_emails}

If you receive this email, your configuration is working properly!
"""

email_test_html_template = """<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Email Configuration Test</h2>
  <p>This is a test email to verify your email configuration is working correctly.</p>
  <p><strong>Timestamp:</strong> {timestamp}</p>
  <p><strong>From:</strong> {from_address}</p>
  <p><strong>Admin Emails:</strong> {admin_emails}</p>
  <p>If you receive this email, your configuration is working properly!</p>
</div>
"""
