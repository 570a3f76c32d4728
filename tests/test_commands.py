import subprocess
import unittest
from pathlib import Path
from unittest.mock import patch

from flexiconvert.core.exceptions import (
    EngineFailedError,
    EngineUnavailableError,
    InvalidSettingsError,
    ProcessingTimeoutError,
)
from flexiconvert.engine.audio import build_audio_command
from flexiconvert.engine.document import build_compress_command, build_pdfa_command
from flexiconvert.engine.external import require_binary, run_engine, translate_engine_error
from flexiconvert.engine.image import build_magick_command, build_magick_operations
from flexiconvert.engine.video import build_video_command


class TestAudioCommands(unittest.TestCase):
    def test_conversion_to_mp3_uses_quality_bitrate(self):
        cmd = build_audio_command("ffmpeg", Path("in.wav"), Path("out.mp3"), "wav-to-mp3", {"quality": "high"})
        self.assertEqual(cmd[:5], ["ffmpeg", "-y", "-i", "in.wav", "-vn"])
        self.assertIn("libmp3lame", cmd)
        self.assertEqual(cmd[cmd.index("-b:a") + 1], "320k")
        self.assertEqual(cmd[cmd.index("-ar") + 1], "44100")
        self.assertEqual(cmd[cmd.index("-ac") + 1], "2")
        self.assertEqual(cmd[-1], "out.mp3")

    def test_lossless_output_has_no_bitrate(self):
        cmd = build_audio_command("ffmpeg", Path("in.mp3"), Path("out.wav"), "mp3-to-wav", {"channels": "mono"})
        self.assertNotIn("-b:a", cmd)
        self.assertIn("pcm_s16le", cmd)
        self.assertEqual(cmd[cmd.index("-ac") + 1], "1")

    def test_compress_flac_uses_compression_level(self):
        cmd = build_audio_command("ffmpeg", Path("in.flac"), Path("out.flac"), "compress-audio", {})
        self.assertEqual(cmd[cmd.index("-compression_level") + 1], "8")

    def test_compress_mp3_validates_bitrate(self):
        cmd = build_audio_command("ffmpeg", Path("in.mp3"), Path("out.mp3"), "compress-audio", {"bitrate": "96"})
        self.assertEqual(cmd[cmd.index("-b:a") + 1], "96k")
        with self.assertRaises(InvalidSettingsError):
            build_audio_command("ffmpeg", Path("in.mp3"), Path("out.mp3"), "compress-audio", {"bitrate": "999"})

    def test_noise_reduction_adds_filter(self):
        cmd = build_audio_command("ffmpeg", Path("in.wav"), Path("out.wav"), "noise-reduction", {})
        self.assertEqual(cmd[cmd.index("-af") + 1], "highpass=f=200,lowpass=f=3000")

    def test_m4a_keeps_aac_in_mp4_container(self):
        cmd = build_audio_command("ffmpeg", Path("in.m4a"), Path("out.m4a"), "compress-audio", {"bitrate": "96"})
        self.assertEqual(cmd[cmd.index("-f") + 1], "ipod")
        self.assertEqual(cmd[cmd.index("-c:a") + 1], "aac")
        self.assertEqual(cmd[cmd.index("-b:a") + 1], "96k")

        cmd = build_audio_command("ffmpeg", Path("in.m4a"), Path("out.m4a"), "noise-reduction", {})
        self.assertIn("-af", cmd)
        self.assertEqual(cmd[-1], "out.m4a")

    def test_invalid_sample_rate(self):
        with self.assertRaises(InvalidSettingsError):
            build_audio_command("ffmpeg", Path("in.wav"), Path("out.mp3"), "wav-to-mp3", {"sampleRate": "12345"})


class TestVideoCommands(unittest.TestCase):
    def test_gif(self):
        cmd = build_video_command("ffmpeg", Path("in.mp4"), Path("out.gif"), "video-to-gif", {})
        self.assertEqual(cmd[cmd.index("-vf") + 1], "fps=10,scale=320:-1:flags=lanczos")
        self.assertIn("-an", cmd)

    def test_webm_uses_vp9_and_opus(self):
        cmd = build_video_command("ffmpeg", Path("in.mp4"), Path("out.webm"), "mp4-to-webm", {})
        self.assertIn("libvpx-vp9", cmd)
        self.assertIn("libopus", cmd)

    def test_compress_with_resolution_and_original_frame_rate(self):
        cmd = build_video_command(
            "ffmpeg", Path("in.mov"), Path("out.mp4"), "compress-video",
            {"resolution": "720p", "bitrate": "1500", "frameRate": "original"},
        )
        self.assertEqual(cmd[cmd.index("-crf") + 1], "28")
        self.assertEqual(cmd[cmd.index("-b:v") + 1], "1500k")
        self.assertEqual(cmd[cmd.index("-vf") + 1], "scale=1280:720")
        self.assertNotIn("-r", cmd)

    def test_change_fps_default(self):
        cmd = build_video_command("ffmpeg", Path("in.mp4"), Path("out.mp4"), "change-fps", {})
        self.assertEqual(cmd[cmd.index("-r") + 1], "30")

    def test_invalid_resolution(self):
        with self.assertRaises(InvalidSettingsError):
            build_video_command("ffmpeg", Path("in.mp4"), Path("out.mp4"), "change-resolution", {"resolution": "8k"})


class TestImageCommands(unittest.TestCase):
    def test_gif_input_uses_first_frame(self):
        cmd = build_magick_command("magick", Path("in.gif"), Path("out.png"), "gif-to-png", {})
        self.assertEqual(cmd[1], "in.gif[0]")
        self.assertEqual(cmd[-1], "out.png")

    def test_named_quality(self):
        ops = build_magick_operations("png-to-jpg", {"quality": "high"}, "jpg")
        self.assertEqual(ops[-2:], ["-quality", "95"])

    def test_resize_without_aspect(self):
        ops = build_magick_operations("resize-custom", {"width": 200, "height": 100, "maintainAspectRatio": "false"}, "png")
        self.assertEqual(ops[ops.index("-resize") + 1], "200x100!")

    def test_thumbnail_crops_to_square_by_default(self):
        ops = build_magick_operations("thumbnail", {"size": 64}, "jpg")
        self.assertIn("-extent", ops)
        self.assertEqual(ops[ops.index("-thumbnail") + 1], "64x64^")

    def test_effects(self):
        self.assertEqual(build_magick_operations("grayscale", {}, "png"), ["-modulate", "100,0,100"])
        self.assertEqual(build_magick_operations("sepia", {}, "png"), ["-sepia-tone", "80%"])
        self.assertEqual(build_magick_operations("blur", {}, "png"), ["-blur", "5x3"])
        self.assertEqual(build_magick_operations("contrast", {"contrast": 150}, "png"), ["-contrast"])
        self.assertEqual(build_magick_operations("contrast", {"contrast": 50}, "png"), ["+contrast"])
        self.assertEqual(build_magick_operations("brightness", {"brightness": 120}, "png"), ["-modulate", "120,100,100"])

    def test_crop_requires_dimensions(self):
        with self.assertRaises(InvalidSettingsError):
            build_magick_operations("crop", {"width": 10}, "png")

    def test_watermark_places_escaped_text(self):
        ops = build_magick_operations(
            "watermark", {"text": "@secret 100%", "position": "top-left", "opacity": 0.4, "margin": 5}, "jpg"
        )
        self.assertEqual(ops[ops.index("-gravity") + 1], "NorthWest")
        self.assertEqual(ops[ops.index("-fill") + 1], "rgba(255,255,255,0.4)")
        self.assertEqual(ops[-2:], ["+5+5", "\\@secret 100%%"])

    def test_watermark_validates_settings(self):
        for settings in ({}, {"text": "x", "opacity": 2}, {"text": "x", "position": "middle"}, {"text": "a\nb"}):
            with self.assertRaises(InvalidSettingsError):
                build_magick_operations("watermark", settings, "png")

    def test_crop_circle_masks_centered_square(self):
        cmd = build_magick_command("magick", Path("in.jpg"), Path("out.png"), "crop-circle", {}, size=(200, 100))
        self.assertEqual(cmd[cmd.index("-extent") + 1], "100x100")
        self.assertEqual(cmd[cmd.index("-draw") + 1], "circle 50,50 50,0")
        self.assertEqual(cmd[cmd.index("-compose") + 1], "DstIn")
        self.assertEqual(cmd[-1], "out.png")


class TestGhostscriptCommands(unittest.TestCase):
    def test_compress_presets(self):
        cmd = build_compress_command("gs", Path("in.pdf"), Path("out.pdf"), "low")
        self.assertIn("-dPDFSETTINGS=/ebook", cmd)
        self.assertIn("-dColorImageResolution=72", cmd)
        self.assertIn("-sOutputFile=out.pdf", cmd)
        self.assertEqual(cmd[-1], "in.pdf")

    def test_pdfa(self):
        cmd = build_pdfa_command("gs", Path("in.pdf"), Path("out.pdf"))
        self.assertIn("-dPDFA=2", cmd)


class TestRunEngine(unittest.TestCase):
    def test_non_zero_exit_raises_translated_error(self):
        completed = subprocess.CompletedProcess(["ffmpeg"], 1, stdout="", stderr="moov atom not found")
        with patch("flexiconvert.engine.external.subprocess.run", return_value=completed):
            with self.assertRaises(EngineFailedError) as ctx:
                run_engine("FFmpeg", ["ffmpeg", "-i", "x.mp4"], 10, filename="x.mp4")
        self.assertIn("damaged", ctx.exception.message)
        self.assertEqual(ctx.exception.return_code, 1)
        self.assertEqual(ctx.exception.status_code, 422)

    def test_timeout(self):
        with patch(
            "flexiconvert.engine.external.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="ffmpeg", timeout=5),
        ):
            with self.assertRaises(ProcessingTimeoutError) as ctx:
                run_engine("FFmpeg", ["ffmpeg"], 5, filename="clip.mp4")
        self.assertEqual(ctx.exception.status_code, 504)
        self.assertIn("clip.mp4", ctx.exception.message)

    def test_missing_binary(self):
        with patch("flexiconvert.engine.external.subprocess.run", side_effect=FileNotFoundError()):
            with self.assertRaises(EngineUnavailableError):
                run_engine("FFmpeg", ["ffmpeg"], 5)

    def test_require_binary_reports_unavailable(self):
        with patch("flexiconvert.engine.external.find_binary", return_value=None):
            with self.assertRaises(EngineUnavailableError) as ctx:
                require_binary("FFmpeg", ("ffmpeg",))
        self.assertEqual(ctx.exception.status_code, 503)

    def test_translate_password_error(self):
        message = translate_engine_error("Ghostscript", "This file requires a password", 1)
        self.assertIn("password-protected", message)
