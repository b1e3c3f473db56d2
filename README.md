# printtrace

`printtrace` takes a photograph of an object lying on a backlit lightbox or a
sheet of paper. It turns it into a closed outline that you can export as a DXF
polyline in millimetres. You can use the outline to build inserts, holders and
cut-outs in CAD or for 3D printing.

The package is a Python library built on NumPy, SciPy and Pillow. Images are
NumPy arrays in `(height, width[, channels])` layout with BGR channel order.
Contours are lists of `(x, y)` tuples.

## Installation

Install the package with your usual Python package tooling. It depends on
`numpy`, `scipy` and `pillow`. The `test` extra adds `pytest`.

## The pipeline

`printtrace.pipeline.process_image_to_stage(input_path, params, target_stage)`
runs the following steps. It stops after the stage you ask for. The stages are
named by the `Stage` enumeration.

| Stage | What it does |
|-------|--------------|
| `Stage.LOADED` | Loads the image with `load_image` and converts it to grey. Images smaller than 100 × 100 pixels raise `ValueError`. Unreadable files raise `OSError`. |
| `Stage.LIGHTBOX_CROPPED` | 1. Normalises the lighting with CLAHE.<br>2. Finds the sheet from a LAB colour mask (Otsu thresholding is used when no colour image is given) and morphology.<br>3. Reduces the sheet to four corners and refines them to sub-pixel positions.<br>4. Warps the grey image to `lightbox_width_px` × `lightbox_height_px`. |
| `Stage.NORMALIZED` | Applies CLAHE to the warped image and returns the result. |
| `Stage.BOUNDARY_DETECTED` | Returns the warped image and the four refined corners, as integers. |
| `Stage.OBJECT_DETECTED` | 1. Thresholds the object: adaptive, manual or Otsu thresholding, as set in the params.<br>2. Cleans the result with morphology.<br>3. Picks a connected component.<br>4. Traces the component's edge. |
| `Stage.SMOOTHED` | Smooths the outline when `enable_smoothing` is set. |
| `Stage.DILATED` | Grows the outline by `dilation_amount_mm` when that value is positive. |
| `Stage.FINAL` | Checks that the outline has at least three points and a perimeter of at least `min_perimeter`. Otherwise it raises `RuntimeError`. |

The stage call returns a pair: an image and a contour. The contour is empty
before `OBJECT_DETECTED`, except at `BOUNDARY_DETECTED`. If no object is found,
the call raises `RuntimeError`.

`process_image_to_contour(input_path, params=None)` runs all stages. It
returns only the final outline, in warped-image pixels.

## Usage

### Trace a contour and save it as DXF

```python
from printtrace.params import ProcessingParams
from printtrace.pipeline import process_image_to_contour
from printtrace.dxf import save_contour_as_dxf

params = ProcessingParams(lightbox_width_mm=210.0, lightbox_height_mm=297.0,
                          lightbox_width_px=1050, lightbox_height_px=1485)
contour = process_image_to_contour("photo.jpg", params)

pixels_per_mm = (params.lightbox_width_px / params.lightbox_width_mm
                 + params.lightbox_height_px / params.lightbox_height_mm) / 2
save_contour_as_dxf(contour, pixels_per_mm, "outline.dxf")
```

`save_contour_as_dxf` divides every coordinate by `pixels_per_mm`. It returns
the path that was written.

### Stop at an intermediate stage

```python
from printtrace.params import ProcessingParams
from printtrace.pipeline import Stage, process_image_to_stage

params = ProcessingParams()
warped, corners = process_image_to_stage("photo.jpg", params, Stage.BOUNDARY_DETECTED)
```

### Parameters

`printtrace.params.ProcessingParams` is a dataclass that holds every setting.
The lightbox sizes, `clahe_tile_size`, `large_kernel` and `morph_kernel_size`
must be positive, or construction raises `ValueError`.

`smoothing_mode` takes a `SmoothingMode`:

- `CURVATURE` is the default.
- `MORPHOLOGICAL` uses close/open smoothing.

### Writing DXF yourself

`printtrace.dxf.DXFWriter` collects closed lightweight polylines and writes
them as an AutoCAD 2000 (AC1015) DXF document with millimetre units.

```python
from printtrace.dxf import DXFWriter

writer = DXFWriter(pixels_per_mm=4.0)
writer.add_contour([(0, 0), (400, 0), (400, 200), (0, 200)])
text = writer.render()        # the document as a string
writer.write("rectangle.dxf")  # writes the file and clears the polylines
```

Prepared `LWPolyline` objects, made of `Vertex` items, can be added with
`add_lwpolyline`.

### Building blocks

Each step of the pipeline can also be called on its own:

- `printtrace.geometry` has the polygon helpers:
  - `contour_area`
  - `arc_length`
  - `bounding_rect` (returns a `Rect`)
  - `approx_poly_dp` (Douglas–Peucker)
  - `convex_hull`
  - `min_area_rect`
  - `order_corners`
- `printtrace.imaging` covers colour conversion (`to_grayscale`, `bgr_to_lab`),
  `clahe`, thresholds, blurs, morphology (`structuring_element`, `erode`,
  `dilate`, `morph_open`, `morph_close`), `sobel` and `canny`.
- `printtrace.contours` covers contour work:
  - `find_contours`, with a `RetrievalMode`
  - `fill_poly`
  - `draw_polyline`
  - `connected_components`
  - `largest_contour`
- `printtrace.transform` has `perspective_transform`, `warp_perspective`,
  `corner_sub_pix`, `hough_lines` and `intersect_lines`.
- `printtrace.imagefile` reads and writes images (`read_image`, `write_image`,
  `load_image`).
- `printtrace.lightbox` offers a second way to detect corners.
  `detect_lightbox_corners(bgr, params)` runs these steps:
  1. LAB and CLAHE.
  2. Division normalisation.
  3. A paper mask with an adaptive-threshold fallback.
  4. Largest-component cleanup.
  5. Contour corners, falling back to Canny and Hough lines.

  It returns the ordered corners, or `[]` if detection fails. The staged
  pipeline does not use it.
- `printtrace.shaping` holds these functions:
  - `find_object_contour`
  - `smooth_contour`
  - `dilate_contour`
  - `validate_contour`
  - `refine_contour`
  - `merge_nearby_contours`

```python
from printtrace.geometry import contour_area, order_corners

square = [(10, 10), (0, 10), (10, 0), (0, 0)]
contour_area(square)   # 100.0
order_corners(square)  # [(0, 0), (10, 0), (10, 10), (0, 10)]  TL, TR, BR, BL
```

## Logging and debug output

Progress is reported through the standard `logging` module, under the
`printtrace.*` loggers.

When `enable_debug_output` is set, intermediate images are written under
`debug_output_path`:

- `printtrace.debug.save_debug_image` and its variants write single images
  straight away.
- `push_debug_image` and `push_debug_contour` add images to
  `params.debug_image_stack`. They do this only when `verbose_output` is also
  set.
- `flush_debug_stack` writes the stacked images as `01_name.jpg`,
  `02_name.jpg` and so on, then empties the stack. A full pipeline run calls it
  at the end.

## What it does not do

`printtrace` is a library only:

- It installs no command-line program.
- It reads no DXF files; it only writes them.
- It does not store results anywhere except the files you ask it to write.